"""Default action catalog and starter charity directory."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.db.enums import ActionCategory, ActionDifficulty
from redeem.db.models import Action, CharityOrganization

logger = logging.getLogger(__name__)

C = ActionCategory
D = ActionDifficulty

ACTION_SEED_DATA: list[dict] = [
    # Community service
    {
        "title": "Serve at soup kitchen",
        "description": "Help serve meals to those in need at a local soup kitchen or food bank. "
        "Spend at least 3 hours helping prepare and distribute food.",
        "category": C.COMMUNITY_SERVICE,
        "difficulty": D.MEDIUM,
        "estimated_hours": Decimal("3"),
        "proof_instructions": "Take a photo of yourself serving food. Your face must be visible. "
        "Include the location name or signage if possible.",
        "requires_location": True,
    },
    {
        "title": "Clean public spaces",
        "description": "Organize or participate in a community cleanup of parks, streets, or public areas for 2 hours.",
        "category": C.COMMUNITY_SERVICE,
        "difficulty": D.EASY,
        "estimated_hours": Decimal("2"),
        "proof_instructions": "Take before and after photos showing the cleaned area with you in at least one photo.",
        "requires_location": True,
    },
    {
        "title": "Visit elderly at nursing home",
        "description": "Spend quality time visiting residents at a nursing home or assisted living facility for 2 hours.",
        "category": C.COMMUNITY_SERVICE,
        "difficulty": D.MEDIUM,
        "estimated_hours": Decimal("2"),
        "proof_instructions": "Take a respectful photo at the facility (follow facility photo policies). "
        "Get a signature or stamp from staff if needed.",
        "requires_location": True,
    },
    {
        "title": "Tutor or mentor youth",
        "description": "Provide free tutoring or mentoring to students in need for 3 hours.",
        "category": C.EDUCATION,
        "difficulty": D.MEDIUM,
        "estimated_hours": Decimal("3"),
        "proof_instructions": "Take a photo during the session (protect student privacy, face not required). "
        "Provide documentation from the organization if available.",
        "requires_location": False,
    },
    # Church service
    {
        "title": "Volunteer at church service",
        "description": "Serve at your local church for 3 hours: setup, greeting, children's ministry, or other needs.",
        "category": C.CHURCH_SERVICE,
        "difficulty": D.EASY,
        "estimated_hours": Decimal("3"),
        "proof_instructions": "Take a photo at the church showing you serving. Include the church building or signage.",
        "requires_location": True,
    },
    {
        "title": "Lead or attend Bible study",
        "description": "Lead or actively participate in a Bible study session, helping others grow in their faith.",
        "category": C.CHURCH_SERVICE,
        "difficulty": D.MEDIUM,
        "estimated_hours": Decimal("2"),
        "proof_instructions": "Take a group photo from the session (with permission). Your face must be visible.",
        "requires_location": False,
    },
    {
        "title": "Church building maintenance",
        "description": "Help with church building maintenance, cleaning, or improvement projects for 4 hours.",
        "category": C.CHURCH_SERVICE,
        "difficulty": D.HARD,
        "estimated_hours": Decimal("4"),
        "proof_instructions": "Take photos showing the work being done with you visibly participating.",
        "requires_location": True,
    },
    # Charity
    {
        "title": "Donate blood",
        "description": "Donate blood at a blood drive or donation center.",
        "category": C.CHARITY,
        "difficulty": D.EASY,
        "estimated_hours": Decimal("1.5"),
        "proof_instructions": "Take a photo of yourself at the donation center or with the post-donation materials.",
        "requires_location": True,
    },
    {
        "title": "Volunteer at charity event",
        "description": "Help organize or work at a charitable event or fundraiser for 4 hours.",
        "category": C.CHARITY,
        "difficulty": D.MEDIUM,
        "estimated_hours": Decimal("4"),
        "proof_instructions": "Take photos showing you participating in the event. Include event signage or materials.",
        "requires_location": True,
    },
    {
        "title": "Collect donations for charity",
        "description": "Organize and collect clothing, food, or other items for a charitable organization.",
        "category": C.CHARITY,
        "difficulty": D.MEDIUM,
        "estimated_hours": Decimal("3"),
        "proof_instructions": "Take photos of the collected items and delivery to the charity. Show yourself in the photos.",
        "requires_location": False,
    },
    # Helping individuals
    {
        "title": "Help elderly neighbor with chores",
        "description": "Assist an elderly person in your neighborhood with yard work, shopping, or household tasks for 3 hours.",
        "category": C.HELPING_INDIVIDUALS,
        "difficulty": D.MEDIUM,
        "estimated_hours": Decimal("3"),
        "proof_instructions": "Take photos of the work completed. Include yourself in at least one photo.",
        "requires_location": False,
    },
    {
        "title": "Prepare meals for someone in need",
        "description": "Cook and deliver meals to someone who is sick, struggling, or in need.",
        "category": C.HELPING_INDIVIDUALS,
        "difficulty": D.EASY,
        "estimated_hours": Decimal("2"),
        "proof_instructions": "Take photos of meal preparation and delivery (with recipient permission if showing them).",
        "requires_location": False,
    },
    {
        "title": "Help someone move or repair",
        "description": "Assist someone with moving, home repairs, or other physical labor for 4 hours.",
        "category": C.HELPING_INDIVIDUALS,
        "difficulty": D.HARD,
        "estimated_hours": Decimal("4"),
        "proof_instructions": "Take photos during the work. Show yourself actively helping.",
        "requires_location": False,
    },
    # Environmental
    {
        "title": "Plant trees or community garden",
        "description": "Participate in tree planting or help maintain a community garden for 3 hours.",
        "category": C.ENVIRONMENTAL,
        "difficulty": D.MEDIUM,
        "estimated_hours": Decimal("3"),
        "proof_instructions": "Take photos of yourself planting or gardening. Show the work being done.",
        "requires_location": True,
    },
    {
        "title": "Beach or river cleanup",
        "description": "Organize or join a beach, river, or waterway cleanup effort for 2 hours.",
        "category": C.ENVIRONMENTAL,
        "difficulty": D.EASY,
        "estimated_hours": Decimal("2"),
        "proof_instructions": "Take before/after photos with collected trash. Include yourself in photos.",
        "requires_location": True,
    },
    # Healthcare
    {
        "title": "Volunteer at hospital",
        "description": "Volunteer at a hospital helping patients, families, or staff for 4 hours.",
        "category": C.HEALTHCARE,
        "difficulty": D.HARD,
        "estimated_hours": Decimal("4"),
        "proof_instructions": "Take a photo at the hospital (following hospital photo policies). "
        "Get staff verification if needed.",
        "requires_location": True,
    },
    {
        "title": "Support group facilitation",
        "description": "Lead or co-lead a recovery or support group session.",
        "category": C.HEALTHCARE,
        "difficulty": D.HARD,
        "estimated_hours": Decimal("2"),
        "proof_instructions": "Take a group photo (with permission, no faces if anonymity required). Document the session.",
        "requires_location": False,
    },
]

# Payout accounts are attached by an operator once each charity finishes onboarding
CHARITY_SEED_DATA: list[dict] = [
    {
        "name": "Fight the New Drug",
        "legal_name": "Fight the New Drug, Inc.",
        "description": "Grassroots nonprofit providing research-based education about the harms of pornography.",
        "category": "ANTI_PORNOGRAPHY",
        "website": "https://fightthenewdrug.org",
        "email": "info@fightthenewdrug.org",
        "tax_id": "26-3550143",
    },
    {
        "name": "National Center on Sexual Exploitation",
        "legal_name": "National Center on Sexual Exploitation",
        "description": "Nonpartisan nonprofit tackling the entire spectrum of sexual exploitation "
        "through advocacy, research, and litigation.",
        "category": "SEXUAL_EXPLOITATION",
        "website": "https://endsexualexploitation.org",
        "email": "public@ncose.com",
        "tax_id": "52-1282720",
    },
    {
        "name": "Polaris Project",
        "legal_name": "Polaris",
        "description": "Operates the U.S. National Human Trafficking Hotline and drives systemic change to end trafficking.",
        "category": "HUMAN_TRAFFICKING",
        "website": "https://polarisproject.org",
        "email": "info@polarisproject.org",
        "tax_id": "03-0391561",
    },
    {
        "name": "International Justice Mission",
        "legal_name": "International Justice Mission",
        "description": "Global organization partnering with local authorities to protect people in poverty from violence.",
        "category": "HUMAN_TRAFFICKING",
        "website": "https://www.ijm.org",
        "email": "contact@ijm.org",
        "tax_id": "54-1722887",
    },
    {
        "name": "Exodus Cry",
        "legal_name": "Exodus Cry",
        "description": "Abolitionist organization fighting sexual exploitation through media, "
        "legal advocacy, and survivor outreach.",
        "category": "SEXUAL_EXPLOITATION",
        "website": "https://exoduscry.com",
        "email": "info@exoduscry.com",
        "tax_id": "26-2317116",
    },
    {
        "name": "Shared Hope International",
        "legal_name": "Shared Hope International",
        "description": "Faith-based nonprofit restoring victims of sex trafficking and equipping communities "
        "to prevent exploitation.",
        "category": "CHILD_PROTECTION",
        "website": "https://sharedhope.org",
        "email": "savelives@sharedhope.org",
        "tax_id": "91-1938635",
    },
]


async def seed_catalog(db: AsyncSession) -> tuple[int, int]:
    """Insert default actions and charities that do not exist yet (idempotent).

    Existing rows are left untouched so admin edits survive a restart.
    Returns ``(actions, charities)`` processed.
    """
    now = datetime.now(timezone.utc)
    insert = sqlite_insert if db.get_bind().dialect.name == "sqlite" else pg_insert

    for action_data in ACTION_SEED_DATA:
        stmt = insert(Action).values(**action_data, is_active=True, created_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_nothing(index_elements=["title"])
        await db.execute(stmt)

    for charity_data in CHARITY_SEED_DATA:
        stmt = insert(CharityOrganization).values(
            **charity_data,
            is_active=True,
            is_verified=True,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["name"])
        await db.execute(stmt)

    await db.commit()
    logger.info(
        "Seeded %d catalog actions and %d charities",
        len(ACTION_SEED_DATA), len(CHARITY_SEED_DATA),
    )
    return len(ACTION_SEED_DATA), len(CHARITY_SEED_DATA)
