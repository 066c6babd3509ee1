#!/usr/bin/env python
"""CLI for starting conversations, running batches and submitting evaluations."""
import asyncio
import json

import fire
from tqdm import tqdm

from tutorlab.app import open_lab
from tutorlab.config import configure_logging, settings
from tutorlab.db import create_engine, init_models
from tutorlab.errors import TutorLabError
from tutorlab.progress import get_batch_progress, wait_for_batch


def _dump(value):
    """Print pydantic records (or lists of them) as JSON."""
    if isinstance(value, list):
        print(json.dumps([v.model_dump(mode="json") if hasattr(v, "model_dump") else v for v in value], indent=2))
    elif hasattr(value, "model_dump"):
        print(json.dumps(value.model_dump(mode="json"), indent=2))
    else:
        print(json.dumps(value, indent=2, default=str))


def _run(coro_fn, show_progress: bool = False):
    async def _main():
        async with open_lab(show_progress=show_progress) as lab:
            return await coro_fn(lab)

    configure_logging()
    try:
        return asyncio.run(_main())
    except TutorLabError as e:
        print(f"[{e.code}] {e.message}")
        raise SystemExit(1)


def init_db():
    """Create the record store tables."""
    async def _init():
        engine = create_engine(settings.database_url)
        await init_models(engine)
        await engine.dispose()

    asyncio.run(_init())
    print(f"Initialized {settings.database_url}")


def students(set_type: str = settings.DEFAULT_SET_TYPE):
    """List students of a set."""
    async def _cmd(lab):
        _dump(await lab.client.get_students(set_type=set_type))
    _run(_cmd)


def topics(student_id: str = None, subject_id: str = None):
    """List a student's topics, or all topics (optionally of one subject)."""
    async def _cmd(lab):
        if student_id:
            _dump(await lab.client.get_students_topics(student_id))
        else:
            _dump(await lab.client.get_topics(subject_id))
    _run(_cmd)


def subjects():
    async def _cmd(lab):
        _dump(await lab.client.get_subjects())
    _run(_cmd)


def start(student_id: str, topic_id: str, set_type: str = settings.DEFAULT_SET_TYPE):
    """Start a manual conversation."""
    async def _cmd(lab):
        _dump(await lab.start_manual(student_id, topic_id, set_type))
    _run(_cmd)


def say(conversation_id: str, message: str):
    """Send one tutor message in a manual conversation."""
    async def _cmd(lab):
        turn = await lab.append_manual_turn(conversation_id, message)
        print(f"Student: {turn.student_message.content}")
        print(f"({turn.messages_remaining} turns left{', conversation ended' if turn.conversation_ended else ''})")
    _run(_cmd)


def chat(conversation_id: str):
    """Interactive manual conversation; type 'done' to stop."""
    async def _cmd(lab):
        print("\n===== CONVERSATION STARTS ======")
        while True:
            tutor_message = input("Tutor: ")
            if tutor_message == "done":
                break
            turn = await lab.append_manual_turn(conversation_id, tutor_message)
            print(f"Student: {turn.student_message.content}\n")
            if turn.conversation_ended:
                break
        print("===== CONVERSATION ENDS ======")
    _run(_cmd)


def auto(
    student_id: str,
    topic_id: str,
    system_prompt: str,
    initial_message: str,
    set_type: str = settings.DEFAULT_SET_TYPE,
):
    """Start an auto conversation and wait for the driver to finish."""
    async def _cmd(lab):
        conversation = await lab.start_auto(student_id, topic_id, set_type, system_prompt, initial_message)
        print(f"Conversation {conversation.id} running ({conversation.messages_remaining} turns max)")
        await lab.tasks.drain()
        _dump(await lab.conversations.get_conversation(conversation.id))
    _run(_cmd)


def resume(conversation_id: str):
    """Restart the driver of an auto conversation that stopped mid-run."""
    async def _cmd(lab):
        conversation = await lab.conversations.resume_auto(conversation_id)
        print(f"Conversation {conversation.id} resumed ({conversation.messages_remaining} turns left)")
        await lab.tasks.drain()
        _dump(await lab.conversations.get_conversation(conversation.id))
    _run(_cmd)


def batch(
    name: str,
    system_prompt: str,
    initial_message: str,
    set_type: str = settings.DEFAULT_SET_TYPE,
    wait: bool = True,
):
    """
    Run a batch over every student/topic pair of a set.

    Args:
        name: Batch name
        system_prompt: Instructions for the tutor model
        initial_message: First tutor message of every conversation
        set_type: Student set ("mini_dev", "dev" or "eval")
        wait: Show a progress bar until the batch finishes
    """
    async def _cmd(lab):
        record = await lab.create_batch(name, set_type, system_prompt, initial_message)
        print(f"Batch {record.id}: {record.total_conversations} conversations")
        if not wait:
            return
        with tqdm(total=record.total_conversations, desc=name) as bar:
            async def _update(progress):
                bar.n = progress.completed_conversations
                bar.set_postfix(status=progress.status, running=progress.running_conversations)
                bar.refresh()

            final = await wait_for_batch(lab.store, record.id, on_update=_update)
        print(f"Batch {final.status}: {final.completed_conversations}/{final.total_conversations} completed")
    _run(_cmd)


def progress(batch_id: str):
    async def _cmd(lab):
        snapshot = await get_batch_progress(lab.store, batch_id)
        _dump(snapshot)
        print(f"{snapshot.percent:.1f}% done")
    _run(_cmd)


def conversations(batch_id: str = None):
    async def _cmd(lab):
        _dump(await lab.conversations.list_conversations(batch_id=batch_id))
    _run(_cmd)


def messages(conversation_id: str):
    async def _cmd(lab):
        for message in await lab.conversations.get_messages(conversation_id):
            print(f"{message.role:>7}: {message.content}")
    _run(_cmd)


def batches():
    async def _cmd(lab):
        _dump(await lab.batches.list_batches())
    _run(_cmd)


def evaluate(set_type: str = settings.DEFAULT_SET_TYPE):
    """Submit the latest completed batch of a set for tutoring evaluation."""
    async def _cmd(lab):
        _dump(await lab.submit_evaluation(set_type))
    _run(_cmd)


def evaluations():
    async def _cmd(lab):
        _dump(await lab.evaluations.list_evaluations())
    _run(_cmd)


def leaderboard(kind: str = "combined", set_type: str = None):
    async def _cmd(lab):
        _dump(await lab.client.get_leaderboard(kind=kind, set_type=set_type))
    _run(_cmd)


if __name__ == "__main__":
    fire.Fire()
