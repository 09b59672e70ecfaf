import argparse
import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from convo_stream.app_config import load_json_config, parse_app_config, resolve_runtime_env
from convo_stream.bootstrap import bootstrap_runtime
from convo_stream.errors import TransportError
from convo_stream.grouping import count_messages, group_messages
from convo_stream.models import ChatMessage, StreamStatus, ToolResultEntry
from convo_stream.tool_tracker import tool_use_blocks


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="convo_stream", description="Watch live agent conversation streams.")
    parser.add_argument("streaming_ids", nargs="+", metavar="STREAMING_ID")
    parser.add_argument(
        "--session",
        help="conversation session id whose history is replayed before the (single) stream",
    )
    return parser.parse_args(argv)


def _print_status(streaming_id: str, status: StreamStatus) -> None:
    print(f"[{streaming_id}] {status.connection_state:<12} {status.current_status}")


def _print_error(streaming_id: str, error: Exception) -> None:
    print(f"[{streaming_id}] error: {error}")


def _outline(messages: list[ChatMessage], tool_results: dict[str, ToolResultEntry], depth: int = 0) -> list[str]:
    lines: list[str] = []
    indent = "  " * depth
    for message in messages:
        tools = [
            f"{b.get('name')}({tool_results[b['id']].status if b.get('id') in tool_results else '?'})"
            for b in tool_use_blocks(message.content)
        ]
        suffix = f" tools: {', '.join(tools)}" if tools else ""
        if message.sub_messages:
            suffix += f" [{len(message.sub_messages)} sub]"
        lines.append(f"{indent}- {message.type} {message.id}{suffix}")
        if message.sub_messages:
            lines.extend(_outline(message.sub_messages, tool_results, depth + 1))
    return lines


async def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = _parse_args(argv)

    app = parse_app_config(load_json_config())
    runtime = await bootstrap_runtime(
        app,
        resolve_runtime_env(),
        on_status=_print_status,
        on_error=_print_error,
    )
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")

    try:
        history = None
        if args.session:
            if len(args.streaming_ids) > 1:
                logger.warning("--session applies to a single stream; history replay skipped")
            else:
                try:
                    history = await runtime.load_history(args.session)
                except TransportError as ex:
                    logger.error(f"Could not load history for {args.session}: {ex}")

        for streaming_id in args.streaming_ids:
            runtime.hub.watch(streaming_id, session_id=args.session, history=history)

        await runtime.hub.join()

        for streaming_id in args.streaming_ids:
            aggregator = runtime.hub.aggregator(streaming_id)
            if aggregator is None:
                continue
            grouped = group_messages(aggregator.messages)
            print()
            print(f"{streaming_id}: {len(grouped)} top-level / {count_messages(grouped)} total messages")
            for line in _outline(grouped, aggregator.tool_results):
                print(line)
    finally:
        await runtime.close()
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
