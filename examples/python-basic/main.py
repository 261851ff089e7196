import os

from amorce import AmorceClient, AmorceConfig, EnvKeyProvider, IdentityManager, new_idempotency_key

if os.getenv("AMORCE_PRIVATE_KEY"):
    identity = IdentityManager.from_provider(EnvKeyProvider())
else:
    identity = IdentityManager.generate()

client = AmorceClient.from_config(identity, AmorceConfig.from_env())
print("agent id:", identity.get_agent_id())

services = client.discover(os.getenv("AMORCE_SERVICE_TYPE", "weather"))
if not services:
    print("no services found")
else:
    res = client.transact(services[0], {"query": "forecast", "city": "Paris"}, "high", new_idempotency_key())
    print("transaction:", res.transaction_id, res.status_code)
    if res.result is not None:
        print("status:", res.result.status, res.result.message or "")
