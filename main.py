"""webaccess - Intelligent Web Access

Simple CLI for running a task against one or more URLs.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from webaccess.access_core.intent.service import OPERATIONS
from webaccess.agents.orchestrator import WebAccessOrchestrator
from webaccess.models.schemas import WebAccessResult


def write_attachments(results: list[WebAccessResult], out_dir: str) -> list[Path]:
    """Save screenshots and downloaded files as ``<out_dir>/<n>_<filename>``."""
    target = Path(out_dir)
    written: list[Path] = []
    for index, result in enumerate(results, 1):
        for attachment in result.attachments:
            target.mkdir(parents=True, exist_ok=True)
            path = target / f"{index}_{attachment.filename}"
            path.write_bytes(attachment.content)
            written.append(path)
    return written


async def run_task(
    urls: list[str],
    task: str,
    operation: str | None = None,
    use_llm: bool | None = None,
    model: str | None = None,
    script: str | None = None,
) -> list[WebAccessResult]:
    orchestrator = WebAccessOrchestrator(use_llm=use_llm, model=model)
    return await orchestrator.run(urls, task, operation, script=script)


def main():
    parser = argparse.ArgumentParser(description="Intelligent web access")
    parser.add_argument("--url", "-u", action="append", required=True, help="Target URL (repeatable)")
    parser.add_argument("--task", "-t", required=True, help="Natural-language task")
    parser.add_argument("--operation", "-o", choices=OPERATIONS, help="Skip operation detection")
    parser.add_argument("--use-llm", action="store_true", default=None, help="Enable the LLM agent")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--script", help="JavaScript to evaluate for run_script")
    parser.add_argument("--out-dir", default="output", help="Directory for screenshots and downloads")

    args = parser.parse_args()

    results = asyncio.run(
        run_task(args.url, args.task, args.operation, args.use_llm, args.model, args.script)
    )
    print(json.dumps([result.to_output() for result in results], indent=2, ensure_ascii=False, default=str))

    for path in write_attachments(results, args.out_dir):
        print(f"[+] Saved {path}", file=sys.stderr)

    if not any(result.success for result in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
