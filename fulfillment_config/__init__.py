"""
fulfillment_config -- single public entrypoint for fulfillment configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No kernel component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration.  This package sits above ``fulfillment_kernel``.  The
    kernel MUST NEVER import from ``fulfillment_config``; bridges in this
    package translate configuration into kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_active_config()``.
    - Load-time validation: store, refund policy, ordering, and logging
      sections are validated before a config object exists.
    - Deterministic checksum: the same YAML document always produces the
      same ``FulfillmentConfig.checksum``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` / ``KeyError`` -- validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``FULFILLMENT_CONFIG_TRACE`` log entry with the config id, version,
    checksum, and refund policy, tying each cancellation's refund amount to
    the configuration that governed it.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path

from fulfillment_config.loader import load_config
from fulfillment_config.schema import FulfillmentConfig

_logger = logging.getLogger("fulfillment_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    path: Path | str | None = None,
    database_url: str | None = None,
) -> FulfillmentConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Configuration document. Defaults to the packaged defaults.yaml.
        database_url: Replaces ``store.database_url`` (deployments and
            tests point the same document at different databases).

    Returns:
        A frozen, validated FulfillmentConfig.
    """
    config = load_config(Path(path) if path is not None else DEFAULT_CONFIG_PATH)
    if database_url is not None:
        config = dataclasses.replace(
            config,
            store=dataclasses.replace(config.store, database_url=database_url),
        )

    _logger.info(
        "FULFILLMENT_CONFIG_TRACE",
        extra={
            "trace_type": "FULFILLMENT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "config_checksum": config.checksum,
            "refund_policy_mode": config.refund_policy.mode,
            "refund_policy_fraction": (
                str(config.refund_policy.fraction)
                if config.refund_policy.fraction is not None
                else None
            ),
        },
    )
    return config


__all__ = ["DEFAULT_CONFIG_PATH", "FulfillmentConfig", "get_active_config"]
