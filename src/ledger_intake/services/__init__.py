"""Intake services."""

from ledger_intake.services.intake import (
    ImportContext,
    IntakePipeline,
    build_codec,
    build_oracle,
    build_pipeline,
)

__all__ = ["IntakePipeline", "ImportContext", "build_pipeline", "build_oracle", "build_codec"]
