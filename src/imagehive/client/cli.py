"""Terminal chat client for a running ImageHive server.

Reads prompts from stdin, prints tokens as they stream in and ends every
turn with either a footnote (``GPU``, ``CPU`` or ``offline``) or the
combined error when both the streaming and fallback paths failed.

Commands: ``/clear`` empties the transcript, ``/quit`` exits.
"""

from __future__ import annotations

import argparse
import logging
import sys

from imagehive.client.consumer import EMPTY_REPLY, Conversation, SendOutcome, StreamConsumer
from imagehive.core.transcript import MessageMeta

logger = logging.getLogger(__name__)


def build_footnote(meta: MessageMeta | None) -> str:
    if meta is None:
        return ""
    if meta.offline:
        return "offline"
    return "GPU" if meta.from_gpu else "CPU"


def render_outcome(outcome: SendOutcome, streamed: bool) -> str:
    """Text printed after the streamed tokens for one turn."""
    if not outcome.completed:
        return f"\n[error] {outcome.error}\n"
    lines = []
    if not streamed or outcome.stream_error:
        # Nothing (or only a partial reply) was printed while streaming.
        lines.append(outcome.content or EMPTY_REPLY)
    lines.append(f"[{build_footnote(outcome.meta)}]")
    return "\n" + "\n".join(lines) + "\n"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="imagehive-chat", description=__doc__.splitlines()[0])
    parser.add_argument(
        "--url",
        default="http://127.0.0.1:3000",
        help="Base URL of the ImageHive server (default: %(default)s)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log stream diagnostics")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    consumer = StreamConsumer.connect(args.url)
    conversation = Conversation(consumer)

    def show_token(text: str) -> None:
        sys.stdout.write(text)
        sys.stdout.flush()

    try:
        while True:
            try:
                line = input("you> ").strip()
            except EOFError:
                break
            if not line:
                continue
            if line == "/quit":
                break
            if line == "/clear":
                conversation.clear()
                print("(transcript cleared)")
                continue

            sys.stdout.write("imagehive> ")
            outcome = conversation.send(line, on_token=show_token)
            sys.stdout.write(render_outcome(outcome, streamed=bool(outcome.tokens)))
            sys.stdout.flush()
    except KeyboardInterrupt:
        pass
    finally:
        consumer.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
