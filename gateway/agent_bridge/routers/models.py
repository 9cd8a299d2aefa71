"""Model listing endpoint."""

from fastapi import APIRouter


router = APIRouter()

MODELS = [
    {
        "id": "claude-code",
        "name": "Claude Code (Local CLI)",
        "context_window": 200000,
        "max_tokens": 16384,
    },
]


@router.get("/models")
async def list_models() -> dict:
    """Models the bridge answers for; every request runs the same local CLI."""
    return {"data": MODELS}
