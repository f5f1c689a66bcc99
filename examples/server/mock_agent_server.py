"""
Example: a local pay-per-call agent for trying paycall without spending USDC.

Every agent endpoint answers ``402 Payment Required`` with a quote until the
request carries an ``X-PAYMENT`` header. The header is decoded but not
verified or settled, so any well-formed payment is accepted.

Run:
    uvicorn examples.server.mock_agent_server:app --port 8000

Then point the client at it:
    PAYCALL_API_URL=http://localhost:8000/x402 python examples/client/example_prompt.py
"""

import os
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from paycall import PaycallError, decode_envelope, normalize_amount
from paycall.amounts import atomic_to_usdc
from paycall.envelope import PAYMENT_HEADER

PAY_TO_SOLANA = os.getenv("MOCK_PAY_TO_SOLANA", "11111111111111111111111111111111")
PAY_TO_EVM = os.getenv("MOCK_PAY_TO_EVM", "0x000000000000000000000000000000000000dEaD")
PRICE = os.getenv("MOCK_PRICE", "0.01")

app = FastAPI(title="paycall mock agent")


def _quote(chain: str, resource: str) -> dict:
    evm = chain != "solana"
    return {
        "x402Version": 1,
        "accepts": [
            {
                "scheme": "exact",
                "network": "base" if evm else "solana",
                "maxAmountRequired": PRICE,
                "payTo": PAY_TO_EVM if evm else PAY_TO_SOLANA,
                "resource": resource,
                "asset": "USDC",
                "extra": {"feePayer": "2wKupLR9q6wXYppw8Gr2NvWxKBUqm4PPJKkQfoxHDBg4"},
            }
        ],
    }


async def _handle(request: Request, chain: str, agent_id: str, command: str = None):
    body = await request.json()
    header = request.headers.get(PAYMENT_HEADER)
    if not header:
        return JSONResponse(status_code=402, content=_quote(chain, f"/x402/{chain}/{agent_id}"))

    try:
        envelope = decode_envelope(header)
    except PaycallError as e:
        return JSONResponse(status_code=402, content={"error": str(e)})

    atomic = normalize_amount(PRICE)
    logger.info(f"Accepted {envelope.network} payment for {agent_id} ({atomic} atomic units)")
    return {
        "success": True,
        "agentId": agent_id,
        "response": f"{agent_id} received {command or body}",
        "format": "text",
        "x402Receipt": {
            "amountPaidUsdc": float(atomic_to_usdc(atomic)),
            "amountPaidMicroUsdc": atomic,
            "payTo": _quote(chain, "")["accepts"][0]["payTo"],
            "payer": "unknown",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


@app.post("/x402/{chain}/{agent_id}")
async def agent_endpoint(request: Request, chain: str, agent_id: str):
    return await _handle(request, chain, agent_id)


@app.post("/x402/{chain}/{agent_id}/{command}")
async def command_endpoint(request: Request, chain: str, agent_id: str, command: str):
    return await _handle(request, chain, agent_id, command)


@app.get("/x402/{chain}/resources")
async def resources(chain: str):
    quote = _quote(chain, f"/x402/{chain}/mockputer")["accepts"][0]
    quote["description"] = "Echoes whatever it is sent"
    quote["extra"].update(
        {"agentId": "mockputer", "agentName": "Mockputer", "examplePrompts": ["hello"]}
    )
    return {"x402Version": 1, "accepts": [quote]}
