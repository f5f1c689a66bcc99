"""
Run a command on an agent and wait for a long-running job to finish.
"""

import asyncio
import json

from paycall import AgentClient


async def on_progress(attempt, status):
    print(f"[{attempt}] {status.status} {status.message or ''}")


async def main():
    async with AgentClient() as client:
        agents = await client.list_agents()
        for agent in agents:
            print(f"{agent.id:<16} {agent.price:>8.4f} USDC  {agent.description}")

        # Sent as "/pfp generate --style anime a cat"
        result = await client.command(
            "pfpputer", "pfp", {"_args": ["generate"], "style": "anime", "prompt": "a cat"}
        )
        print(result.response)

        if result.status_url:
            status = await client.poll_status(result.status_url, on_progress=on_progress)
            print(json.dumps(status.model_dump(), indent=2))

        print(f"USDC balance: {await client.get_usdc_balance()}")


asyncio.run(main())
