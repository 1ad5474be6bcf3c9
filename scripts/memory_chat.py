"""
Interactive chat REPL with conversational memory.

Usage:
    poetry run memory-chat --user alice
    poetry run memory-chat --mock --db :memory:
    poetry run memory-chat --user alice --conversation conv_1a2b3c4d5e6f

Commands inside the REPL:
    /memories   list long-term memories for the user
    /reflect    run reflection on the current conversation now
    /quit       exit
"""

import argparse
import sys
from typing import Optional

from chat_memory.chat import TurnOrchestrator
from chat_memory.config import Settings
from chat_memory.errors import BackendUnavailableError, ChatMemoryError
from chat_memory.generation import MockGenerator
from chat_memory.ops import configure_logging
from chat_memory.persist import SQLiteRepository


def show_memories(orchestrator: TurnOrchestrator, user_id: str) -> None:
    """Print the user's long-term memories."""
    memories = orchestrator.memory_store.list_memories(user_id)
    if not memories:
        print("   (no long-term memories yet)")
        return
    for memory in memories:
        print(f"   [{memory.memory_type:<11}] {memory.importance_score:.2f}  {memory.snippet(90)}")


def run_reflection(orchestrator: TurnOrchestrator, user_id: str, conversation_id: Optional[str]) -> None:
    """Reflect on the current conversation and print the results."""
    if conversation_id is None:
        print("   Nothing to reflect on yet.")
        return
    reflections = orchestrator.reflect_now(user_id, conversation_id)
    if not reflections:
        print("   No new reflections.")
    for reflection in reflections:
        print(f"   [{reflection.status}] {reflection.text}")


def repl(orchestrator: TurnOrchestrator, user_id: str, conversation_id: Optional[str], model: Optional[str]) -> int:
    """Read-eval-print loop; returns the process exit code."""
    print(f"💬 Chatting as '{user_id}'. Type /quit to exit.\n")

    while True:
        try:
            line = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return 0

        if not line:
            continue
        if line in ("/quit", "/exit"):
            return 0
        if line == "/memories":
            show_memories(orchestrator, user_id)
            continue
        if line == "/reflect":
            try:
                run_reflection(orchestrator, user_id, conversation_id)
            except ChatMemoryError as e:
                print(f"❌ Reflection failed: {e}")
            continue

        try:
            result = orchestrator.handle_turn(user_id, line, conversation_id=conversation_id, model=model)
        except BackendUnavailableError as e:
            print(f"❌ Model backend unavailable: {e}")
            continue
        except ChatMemoryError as e:
            print(f"❌ {e}")
            continue

        conversation_id = result.conversation.id
        if result.tool_execution is not None:
            status = "ok" if result.tool_execution.result.success else "failed"
            print(f"   🔧 {result.tool_execution.tool_name} ({status})")
        print(f"bot> {result.reply}\n")


def main():
    """CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="Chat with a local LLM that remembers you across conversations"
    )
    parser.add_argument(
        "--user",
        type=str,
        default="local-user",
        help="User ID that owns conversations and memories (default: local-user)",
    )
    parser.add_argument(
        "--conversation",
        type=str,
        default=None,
        help="Continue an existing conversation ID",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Ollama chat model (default: from settings)",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="SQLite database path, or :memory: (default: from settings)",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use the offline mock generator instead of Ollama",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level (default: from settings)",
    )

    args = parser.parse_args()

    settings = Settings.from_env()
    configure_logging(
        level=args.log_level or settings.logging.level,
        json_output=settings.logging.json_output,
    )

    generator = MockGenerator() if args.mock else None
    repository = SQLiteRepository(args.db) if args.db else None
    orchestrator = TurnOrchestrator.from_settings(settings, generator=generator, repository=repository)

    if not args.mock and not orchestrator.generator.is_available():
        print(f"❌ Ollama not reachable at {settings.ollama.host}. Start it with 'ollama serve' or use --mock.")
        orchestrator.close()
        sys.exit(1)

    with orchestrator:
        if args.conversation:
            try:
                orchestrator.get_conversation(args.user, args.conversation)
            except ChatMemoryError as e:
                print(f"❌ {e}")
                sys.exit(1)
        exit_code = repl(orchestrator, args.user, args.conversation, args.model)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
