"""Slash-command tools over the knowledge service.

Each tool takes the raw argument string that followed the command and
returns the reply text. They are synchronous; the chat core runs them on a
worker thread.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from leara.memory.models import MemoryQuery, TaskStatus

if TYPE_CHECKING:
    from leara.memory.service import KnowledgeService

Tool = Callable[[str], str]

HELP_TEXT = """\
Commands:
  /remember <key>: <value>   store or replace a memory
  /forget <key>              forget a memory
  /recall <query>            search memories
  /task <text>               create a task from natural language
  /tasks                     list open tasks
  /done <id>                 mark a task completed
  /summary                   important memories and pending tasks
  /help                      show this help"""


def _split_key_value(args: str) -> tuple[str, str]:
    if ":" in args:
        key, _, value = args.partition(":")
    else:
        key, _, value = args.partition(" ")
    return key.strip(), value.strip()


def get_memory_tools(service: KnowledgeService) -> dict[str, Tool]:
    """Return a dict of command name -> callable for memory operations."""

    def remember(args: str) -> str:
        key, value = _split_key_value(args)
        if not key or not value:
            return "Usage: /remember <key>: <value>"
        memory = service.store_memory(key, value)
        return f"Remembered {memory.key} (category: {memory.category}, priority: {memory.priority})"

    def forget(args: str) -> str:
        key = args.strip()
        if not key:
            return "Usage: /forget <key>"
        if service.forget_memory(key):
            return f"Forgot {key}"
        return f"No memory named {key}"

    def recall(args: str) -> str:
        if not args.strip():
            recent = service.list_memories(MemoryQuery(limit=10)).items
            if not recent:
                return "(no memories yet)"
            return "\n".join(f"- {m.key}: {m.value}" for m in recent)
        memories = service.search(args)
        if not memories:
            return f"Nothing found for: {args.strip()}"
        return "\n".join(f"- {m.key}: {m.value} [{m.category}, p{m.priority}]" for m in memories)

    def task(args: str) -> str:
        if not args.strip():
            return "Usage: /task <description>"
        created = service.create_task_from_text(args)
        due = f", due {created.due_date:%Y-%m-%d %H:%M}" if created.due_date else ""
        return f"Created task #{created.id}: {created.title} (priority {created.priority}{due})"

    def tasks(args: str) -> str:
        pending = service.get_pending_tasks()
        if not pending:
            return "(no pending tasks)"
        return "\n".join(f"#{t.id} {t.title} [Priority: {t.priority}]" for t in pending)

    def done(args: str) -> str:
        try:
            task_id = int(args.strip().lstrip("#"))
        except ValueError:
            return "Usage: /done <task id>"
        updated = service.update_task_status(task_id, TaskStatus.COMPLETED.value)
        if updated is None:
            return f"No task #{task_id}"
        return f"Completed #{task_id}: {updated.title}"

    def summary(args: str) -> str:
        return service.summarize().rstrip()

    def help(args: str) -> str:
        return HELP_TEXT

    return {
        "remember": remember,
        "forget": forget,
        "recall": recall,
        "task": task,
        "tasks": tasks,
        "done": done,
        "summary": summary,
        "help": help,
    }
