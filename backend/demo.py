"""Create demo campaign data for development/testing."""

import shutil

from backend.services import Services

DEMO_CAMPAIGN = "dragons-hollow"
DEMO_SESSION = "demo-session"

# Stored in the legacy single-tier shape on purpose.
DEMO_CAMPAIGN_POOL = {
    "enemies": [
        {
            "id": "young-dragon", "name": "Young Red Dragon",
            "description": "Scorched scales, short temper, hoards stolen tithe silver.",
            "locationId": "dragon-lair", "moods": ["tense"], "milestoneId": "face-the-dragon",
            "healthPoints": 178, "attackPower": 14, "level": 7,
        },
        {
            "id": "kobold-scouts", "name": "Kobold Scouts",
            "description": "Three kobolds who worship the dragon and spy on the village.",
            "locationId": "mountain-pass", "timesOfDay": ["dusk", "night"],
            "healthPoints": 5, "attackPower": 4,
        },
    ],
    "npcs": [
        {
            "id": "elder-mira", "name": "Elder Mira",
            "description": "The village elder, who knows more about the dragon than she admits.",
            "locationId": "village-square", "role": "quest giver", "disposition": "wary",
        },
        {
            "id": "gareth", "name": "Gareth",
            "description": "Former captain of the guard, now a drunk at the inn.",
            "locationId": "village-inn", "moods": ["calm", "somber"], "role": "ally",
        },
    ],
    "items": [
        {
            "id": "fire-salve", "name": "Fire Salve",
            "description": "A pungent ointment that dulls burns.",
            "locationId": "village-inn", "rarity": "uncommon", "value": 25,
        },
    ],
    "quests": [
        {
            "id": "missing-tithe", "name": "The Missing Tithe",
            "description": "The silver sent to the dragon never arrived. Who took it?",
            "milestoneId": "arrive-in-village",
            "objectives": ["Question the elder", "Search the pass"],
            "reward": "120 gold",
        },
    ],
    "events": [
        {
            "id": "night-raid", "name": "Night Raid",
            "description": "Kobolds set a barn alight to test the village's defences.",
            "locationId": "village-square", "timesOfDay": ["night"], "moods": ["tense"],
            "trigger": "party rests in the village",
        },
    ],
}

DEMO_SESSION_POOL = {
    "coreEntities": {
        "npcs": [
            {
                "id": "hooded-stranger", "name": "Hooded Stranger",
                "description": "Watches the party from the corner of the inn.",
                "locationId": "village-inn", "moods": ["tense"], "role": "informant",
            },
        ],
        "events": [
            {
                "id": "bar-brawl", "name": "Bar Brawl",
                "description": "Gareth picks a fight with a merchant's guard.",
                "locationId": "village-inn", "timesOfDay": ["night"],
            },
        ],
    },
    "bonusEntities": {
        "practicalRewards": [
            {"id": "healing-draught", "name": "Healing Draught", "description": "Restores 2d4+2 HP."},
        ],
        "trophyItems": [
            {"id": "dragon-scale", "name": "Dragon Scale", "description": "Still warm to the touch."},
        ],
        "mysteryItems": [
            {
                "id": "sealed-letter", "name": "Sealed Letter",
                "description": "Addressed to Elder Mira, sealed with a dragon sigil.",
            },
        ],
    },
}


def create_demo_data(services: Services) -> None:
    """Wipe pools, sessions and campaigns, then create a demo campaign and session."""
    storage = services.storage
    for sub in ("pools", "sessions", "campaigns"):
        path = storage.base_path / sub
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True)

    storage.write_pool_document(DEMO_CAMPAIGN, DEMO_CAMPAIGN_POOL)
    storage.write_pool_document(DEMO_SESSION, DEMO_SESSION_POOL)

    storage.update_campaign(DEMO_CAMPAIGN, {
        "name": "Dragon's Hollow",
        "defaultMood": "tense",
        "milestones": [
            {"id": "arrive-in-village", "status": "completed"},
            {"id": "face-the-dragon", "status": "pending"},
        ],
    })
    storage.update_session(DEMO_SESSION, {
        "campaignId": DEMO_CAMPAIGN,
        "currentLocation": "village-inn",
        "timeOfDay": "night",
        "partyMemberIds": ["aria", "borin"],
        "recentActions": ["The party arrives at the inn, soaked from the rain."],
    })

    services.character_ai.update(DEMO_SESSION, "aria", {"personality": "cautious", "actionPriority": "support_focus"})
    services.character_ai.update(DEMO_SESSION, "borin", {"personality": "aggressive", "actionPriority": "attack_focus"})

    config = storage.get_config()
    if not config["llm_connections"]:
        services.update_settings({
            "llm_connections": [
                {"name": "echo", "provider_url": "", "provider_format": "echo"},
            ],
            "narrator_fallback_order": ["echo"],
        })
    else:
        services.reload_config()
