"""
Pipeline settings.

Tunables for the referral/commission core, read from the environment (and the
project-root .env file, same as the Supabase credentials).

Environment variables (all optional):
- PIPELINE_IN_QUERY_CHUNK_SIZE: max ids per `in` query (default 30)
- PIPELINE_WRITE_BATCH_SIZE: max rows per write request (default 450)
- PIPELINE_MAX_UPLINE_DEPTH: traversal guard for upline walks (default 64)
- PIPELINE_DEFAULT_COMMISSION_RATE: personal rate in percent when a user has none (default 40)
- PIPELINE_SELLER_ALIASES: JSON object {"Canonical Name": ["VARIANT 1", "VARIANT 2"]}
- PIPELINE_PLACEHOLDER_PHOTO_URL: photo for users created by reconciliation
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from domain.commission import CommissionPolicy
from domain.errors import ConfigurationError
from domain.pipeline import SYSTEM_SELLER_NAME
from domain.referral_graph import DEFAULT_MAX_DEPTH
from repositories.batching import DEFAULT_IN_CHUNK_SIZE, DEFAULT_WRITE_BATCH_SIZE
from repositories.client import env_path

DEFAULT_PLACEHOLDER_PHOTO_URL: str = "https://placehold.co/100x100.png?text=U"


@dataclass(frozen=True, slots=True)
class SellerAlias:
    """Historical spellings of a seller that must be folded into one canonical name."""

    canonical_name: str
    variants: Tuple[str, ...]


DEFAULT_SELLER_ALIASES: Tuple[SellerAlias, ...] = (
    SellerAlias(
        canonical_name="SuperFácil Energia",
        variants=("SUPER FACIL SOLAR", "SUPERFACIL SOLAR"),
    ),
)


@dataclass(frozen=True, slots=True)
class PipelineSettings:
    in_query_chunk_size: int = DEFAULT_IN_CHUNK_SIZE
    write_batch_size: int = DEFAULT_WRITE_BATCH_SIZE
    max_upline_depth: int = DEFAULT_MAX_DEPTH
    commission_policy: CommissionPolicy = field(default_factory=CommissionPolicy)
    seller_aliases: Tuple[SellerAlias, ...] = DEFAULT_SELLER_ALIASES
    reserved_seller_names: Tuple[str, ...] = (SYSTEM_SELLER_NAME,)
    placeholder_photo_url: str = DEFAULT_PLACEHOLDER_PHOTO_URL

    def __post_init__(self) -> None:
        for name in ("in_query_chunk_size", "write_batch_size", "max_upline_depth"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineSettings":
        """
        Build settings from environment variables.

        Raises:
            ConfigurationError: on malformed values.
        """

        if environ is None:
            load_dotenv(dotenv_path=env_path)
            environ = os.environ

        default_rate = _decimal_setting(
            environ, "PIPELINE_DEFAULT_COMMISSION_RATE", CommissionPolicy().default_rate
        )
        if default_rate < 0:
            raise ConfigurationError("PIPELINE_DEFAULT_COMMISSION_RATE must be >= 0")

        return cls(
            in_query_chunk_size=_int_setting(environ, "PIPELINE_IN_QUERY_CHUNK_SIZE", DEFAULT_IN_CHUNK_SIZE),
            write_batch_size=_int_setting(environ, "PIPELINE_WRITE_BATCH_SIZE", DEFAULT_WRITE_BATCH_SIZE),
            max_upline_depth=_int_setting(environ, "PIPELINE_MAX_UPLINE_DEPTH", DEFAULT_MAX_DEPTH),
            commission_policy=CommissionPolicy(default_rate=default_rate),
            seller_aliases=_aliases_setting(environ, "PIPELINE_SELLER_ALIASES"),
            placeholder_photo_url=environ.get("PIPELINE_PLACEHOLDER_PHOTO_URL") or DEFAULT_PLACEHOLDER_PHOTO_URL,
        )


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _decimal_setting(environ: Mapping[str, str], name: str, default: Decimal) -> Decimal:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _aliases_setting(environ: Mapping[str, str], name: str) -> Tuple[SellerAlias, ...]:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return DEFAULT_SELLER_ALIASES

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{name} must be a JSON object: {e}") from None

    if not isinstance(parsed, dict):
        raise ConfigurationError(f"{name} must be a JSON object of canonical name -> variants")

    aliases = []
    for canonical, variants in parsed.items():
        if not isinstance(variants, list) or not all(isinstance(v, str) for v in variants):
            raise ConfigurationError(f"{name}: variants for {canonical!r} must be a list of strings")
        aliases.append(SellerAlias(canonical_name=str(canonical), variants=tuple(variants)))
    return tuple(aliases)


__all__ = [
    "DEFAULT_SELLER_ALIASES",
    "PipelineSettings",
    "SellerAlias",
]
