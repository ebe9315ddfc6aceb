#!/usr/bin/env python
"""Run a decoder generation workflow end to end without the browser."""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from eliot_admin.application import DecoderWorkflowService
from eliot_admin.config import get_settings
from eliot_admin.core.logging import configure_logging
from eliot_admin.domain.workflow import Manufacturer, get_profile
from eliot_admin.infrastructure import DecoderApiClient, DocumentIntelligenceClient


async def _run(args: argparse.Namespace) -> str:
    settings = get_settings()
    jobs = DocumentIntelligenceClient(settings.func_base, settings.func_key, timeout=settings.http_timeout)
    api = DecoderApiClient(timeout=settings.http_timeout)
    workflow = DecoderWorkflowService(settings, jobs=jobs, api=api)
    try:
        workflow.select_manufacturer(args.manufacturer)
        if args.prompt:
            workflow.update_artifacts({"sensor_specific_prompt": args.prompt})

        source = Path(args.input)
        if source.suffix.lower() == ".pdf":
            await workflow.begin_extraction(source.read_bytes())
            await workflow.wait_for_extraction()
        else:
            workflow.paste_documentation(source.read_text(encoding="utf-8"))

        profile = get_profile(args.manufacturer)
        if profile.unified is not None:
            await workflow.run_generic()
        else:
            for step in profile.generation_steps:
                print(f"running {step.value} ...")
                await workflow.run_step(step)
        return workflow.state.artifacts.decoder_code
    finally:
        workflow.reset()
        await jobs.aclose()
        await api.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a payload decoder from a device datasheet")
    parser.add_argument("--manufacturer", required=True, choices=[item.value for item in Manufacturer])
    parser.add_argument("--input", required=True, help="Datasheet PDF, or a text file with the documentation")
    parser.add_argument("--output", required=True, help="Where to write the decoder source")
    parser.add_argument("--prompt", default="", help="Sensor specific hints passed to the generator")
    args = parser.parse_args()

    configure_logging(get_settings())
    code = asyncio.run(_run(args))

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(code, encoding="utf-8")
    print(f"decoder written to {output}")


if __name__ == "__main__":
    main()
