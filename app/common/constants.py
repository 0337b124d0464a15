from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class RoomType(str, Enum):
    LIVING_ROOM = "living-room"
    BEDROOM_MASTER = "bedroom-master"
    BEDROOM_GUEST = "bedroom-guest"
    BEDROOM_KIDS = "bedroom-kids"
    DINING_ROOM = "dining-room"
    KITCHEN = "kitchen"
    HOME_OFFICE = "home-office"
    BATHROOM = "bathroom"
    OUTDOOR_PATIO = "outdoor-patio"


class FurnitureStyle(str, Enum):
    MODERN = "modern"
    TRADITIONAL = "traditional"
    MINIMALIST = "minimalist"
    MID_CENTURY = "mid-century"
    SCANDINAVIAN = "scandinavian"
    INDUSTRIAL = "industrial"
    COASTAL = "coastal"
    FARMHOUSE = "farmhouse"
    LUXURY = "luxury"


ROOM_LABELS: Dict[str, str] = {
    RoomType.LIVING_ROOM.value: "Living Room",
    RoomType.BEDROOM_MASTER.value: "Master Bedroom",
    RoomType.BEDROOM_GUEST.value: "Guest Bedroom",
    RoomType.BEDROOM_KIDS.value: "Kids Bedroom",
    RoomType.DINING_ROOM.value: "Dining Room",
    RoomType.KITCHEN.value: "Kitchen",
    RoomType.HOME_OFFICE.value: "Home Office",
    RoomType.BATHROOM.value: "Bathroom",
    RoomType.OUTDOOR_PATIO.value: "Outdoor/Patio",
}


@dataclass(frozen=True)
class StyleInfo:
    label: str
    description: str


FURNITURE_STYLES: Dict[str, StyleInfo] = {
    FurnitureStyle.MODERN.value: StyleInfo(
        "Modern", "Clean lines, neutral colors, sleek furniture"
    ),
    FurnitureStyle.TRADITIONAL.value: StyleInfo(
        "Traditional", "Elegant, timeless pieces with rich woods"
    ),
    FurnitureStyle.MINIMALIST.value: StyleInfo(
        "Minimalist", "Simple, functional, uncluttered spaces"
    ),
    FurnitureStyle.MID_CENTURY.value: StyleInfo(
        "Mid-Century", "Retro-inspired with organic curves"
    ),
    FurnitureStyle.SCANDINAVIAN.value: StyleInfo(
        "Scandinavian", "Light woods, white walls, cozy textiles"
    ),
    FurnitureStyle.INDUSTRIAL.value: StyleInfo(
        "Industrial", "Raw materials, exposed elements, urban feel"
    ),
    FurnitureStyle.COASTAL.value: StyleInfo(
        "Coastal", "Light, airy, ocean-inspired colors"
    ),
    FurnitureStyle.FARMHOUSE.value: StyleInfo(
        "Farmhouse", "Warm, inviting, natural materials"
    ),
    FurnitureStyle.LUXURY.value: StyleInfo(
        "Luxury", "Opulent, sophisticated, high-end finishes"
    ),
}


def room_label(room_type: str) -> str:
    return ROOM_LABELS.get(room_type, room_type)


def style_info(style: str) -> StyleInfo:
    return FURNITURE_STYLES.get(style, StyleInfo(style, style))


ACCEPTED_IMAGE_TYPES: List[str] = ["image/jpeg", "image/jpg", "image/png", "image/webp"]
MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10MB
MAX_BATCH_SIZE = 10

DEFAULT_CREDITS = 10
LOW_CREDITS_THRESHOLD = 3
FREE_REMIXES_PER_IMAGE = 2
VERSION_WARNING_THRESHOLD = 5


@dataclass(frozen=True)
class PlanInfo:
    slug: str
    name: str
    credits: int
    max_team_members: int
    sort_order: int


PLAN_CATALOG: Dict[str, PlanInfo] = {
    "free": PlanInfo("free", "Free", 5, 1, 0),
    "standard": PlanInfo("standard", "Standard", 60, 1, 1),
    "professional": PlanInfo("professional", "Professional", 150, 1, 2),
    "enterprise": PlanInfo("enterprise", "Enterprise", 500, 10, 3),
}

ENTERPRISE_PLAN_SLUG = "enterprise"
FREE_PLAN_SLUG = "free"


@dataclass(frozen=True)
class TopupPackage:
    id: str
    credits: int
    price_cents: int
    label: str


TOPUP_PACKAGES: Dict[str, TopupPackage] = {
    "topup_10": TopupPackage("topup_10", 10, 500, "10 Credits"),
    "topup_25": TopupPackage("topup_25", 25, 1000, "25 Credits"),
    "topup_50": TopupPackage("topup_50", 50, 1750, "50 Credits"),
}


def get_topup_package(package_id: str) -> Optional[TopupPackage]:
    return TOPUP_PACKAGES.get(package_id)
