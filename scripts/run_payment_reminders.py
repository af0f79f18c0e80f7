"""Run one payment reminder sweep now, outside the daily schedule.

    python -m scripts.run_payment_reminders
"""

import asyncio
import logging

from trainfit.billing.reminders import run_payment_reminders
from trainfit.database import async_session_factory, engine
from trainfit.services.email_service import ResendEmailSender


async def main() -> None:
    async with async_session_factory() as db:
        summary = await run_payment_reminders(db, ResendEmailSender())
        await db.commit()
    await engine.dispose()

    print(f"Checked {summary.checked} active subscriptions")
    print(f"  Reminded:   {summary.reminded} ({summary.emails_sent} emails sent)")
    print(f"  Duplicates: {summary.skipped_duplicate}")
    print(f"  Failed:     {summary.failed}")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(main())
