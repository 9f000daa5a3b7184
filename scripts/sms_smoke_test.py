"""
Scripted SMS conversation against a locally built engine.

Uses whatever the environment configures (.env is loaded by Settings); without
Supabase everything stays in memory and a demo seller is created for the phone.
Field extraction needs OPENAI_API_KEY to pull anything out of the messages.
"""
import asyncio
import sys
import uuid
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.identity_store import InMemoryIdentityStore
from settings import Settings
from workflow import WorkflowInput, WorkflowResult, build_engine, run_workflow

PHONE = "+15550001111"

DEMO_PHOTOS = [
    "https://images.example.com/kurta-front.jpg",
    "https://images.example.com/kurta-back.jpg",
    "https://images.example.com/kurta-tag.jpg",
]


def format_result(text: str, res: WorkflowResult) -> str:
    return (
        f"\n>>> {text}\n"
        f"state: {res.state}\n"
        f"effects: {', '.join(res.side_effects) or '-'}\n"
        f"reply: {res.reply[:500]}"
    )


async def main():
    settings = Settings.from_env()
    engine = build_engine(settings)
    identity = engine.sessions.identity
    if isinstance(identity, InMemoryIdentityStore):
        identity.add_seller("demo-seller@example.com", phone=PHONE, name="Demo")

    async def step(text: str = "", media=None):
        res = await run_workflow(
            engine,
            WorkflowInput(phone=PHONE, text=text, media=media or [], message_id=uuid.uuid4().hex),
        )
        print(format_result(text or f"[{len(media or [])} photo(s)]", res))
        return res

    await step("hi")
    await step("sell Sana Safinaz 3-piece, size M")
    await step("like new, asking $85")
    await step(media=DEMO_PHOTOS)
    await step("what do I have so far?")
    await step("skip")
    await step("1")


if __name__ == "__main__":
    asyncio.run(main())
