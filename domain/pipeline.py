"""
Domain: lead pipeline stages and transition rules.

Contract excerpts implemented here:
- A lead's stage is one of exactly 11 values (closed enum).
- There is no linear order between stages: any stage may move to any other,
  except that a lead cannot leave `finalizado` backward once commission may
  already be settled.
- `para-atribuir` is the pool of unassigned leads that sellers may claim.
- A lead is "active" unless it is finalized, lost, signed or cancelled.

This module contains only pure rules: no I/O, no database, no frameworks.
"""

from __future__ import annotations

from enum import Enum

from .errors import InvalidTransitionError


class StageId(str, Enum):
    PARA_VALIDACAO = "para-validacao"
    PARA_ATRIBUIR = "para-atribuir"
    CONTATO = "contato"
    FATURA = "fatura"
    PROPOSTA = "proposta"
    CONTRATO = "contrato"
    CONFORMIDADE = "conformidade"
    ASSINADO = "assinado"
    FINALIZADO = "finalizado"
    CANCELADO = "cancelado"
    PERDIDO = "perdido"


# Owner sentinel for leads nobody has claimed yet.
UNASSIGNED: str = "unassigned"

# Display name written on leads that sit in the unassigned pool.
SYSTEM_SELLER_NAME: str = "Sistema"

INACTIVE_STAGES: frozenset[StageId] = frozenset({
    StageId.FINALIZADO,
    StageId.PERDIDO,
    StageId.ASSINADO,
    StageId.CANCELADO,
})

CLAIMABLE_STAGE: StageId = StageId.PARA_ATRIBUIR
CLAIMED_STAGE: StageId = StageId.CONTATO


def is_active(stage: StageId) -> bool:
    return stage not in INACTIVE_STAGES


def is_commission_stage(stage: StageId) -> bool:
    """Commission is only ever computed for finalized leads."""

    return stage is StageId.FINALIZADO


def check_transition(current: StageId, requested: StageId) -> None:
    """
    Validate a stage move.

    Raises:
        InvalidTransitionError: when leaving `finalizado` for any other stage.
    """

    if current is StageId.FINALIZADO and requested is not StageId.FINALIZADO:
        raise InvalidTransitionError(current.value, requested.value)


__all__ = [
    "CLAIMABLE_STAGE",
    "CLAIMED_STAGE",
    "INACTIVE_STAGES",
    "SYSTEM_SELLER_NAME",
    "StageId",
    "UNASSIGNED",
    "check_transition",
    "is_active",
    "is_commission_stage",
]
