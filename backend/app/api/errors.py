from __future__ import annotations

from typing import Sequence

from fastapi import HTTPException

from backend.services.errors import ConflictingTransition, LedgerError, NotFoundError


def status_for(err: LedgerError) -> int:
    # 404 id inconnu, 409 conflit concurrent, 400 refus métier
    if isinstance(err, NotFoundError):
        return 404
    if isinstance(err, ConflictingTransition):
        return 409
    return 400


def http_error(errors: Sequence[LedgerError]) -> HTTPException:
    return HTTPException(
        status_code=status_for(errors[0]),
        detail={"errors": [e.to_dict() for e in errors]},
    )
