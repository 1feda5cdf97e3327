import pytest
from fastapi import HTTPException

from archnode.security import _extract_bearer, bearer_token_guard


def test_extract_bearer() -> None:
    assert _extract_bearer("Bearer abc") == "abc"
    assert _extract_bearer("bearer  abc ") == "abc"
    assert _extract_bearer("Basic abc") is None
    assert _extract_bearer("Bearer") is None
    assert _extract_bearer(None) is None


@pytest.mark.asyncio
async def test_guard_reads_current_token() -> None:
    tokens = ["first"]
    guard = bearer_token_guard(lambda: tokens[0])

    await guard(authorization="Bearer first")
    tokens[0] = "second"

    with pytest.raises(HTTPException) as exc:
        await guard(authorization="Bearer first")
    assert exc.value.status_code == 401
    await guard(authorization="Bearer second")
