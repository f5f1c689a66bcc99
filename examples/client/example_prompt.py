import asyncio
import os

from paycall import AgentClient

agent_id = os.getenv("PAYCALL_AGENT", "memeputer")
message = os.getenv("PAYCALL_MESSAGE", "Hello!")


async def main():
    async with AgentClient(verbose=True) as client:
        result = await client.prompt(agent_id, message)
        print(result.response)
        if result.receipt:
            print(f"Paid {result.receipt.amount_paid_usdc} USDC to {result.receipt.pay_to}")
            if result.receipt.estimated:
                print("(server sent no receipt; amount taken from the quote)")


asyncio.run(main())
