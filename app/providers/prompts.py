from app.common.constants import RoomType, room_label, style_info

_BASE_ITEMS = """- An area rug placed ON TOP of the existing flooring
- Wall art or a mirror hung naturally on existing walls
- Subtle decorative accessories (minimal and restrained)
- Indoor plants (optional, realistic placement)
- Lamps that complement the existing lighting
- Curtains or blinds installed ONLY on existing windows"""


def room_furniture_items(room_type: str, style_label: str) -> str:
    if room_type in (
        RoomType.BEDROOM_MASTER.value,
        RoomType.BEDROOM_GUEST.value,
        RoomType.BEDROOM_KIDS.value,
    ):
        items = f"""- A bed appropriate for the bedroom, scaled realistically to the room
- Matching nightstands placed beside the bed
- Soft bedding, pillows, and neutral textiles in {style_label} style"""
    elif room_type == RoomType.LIVING_ROOM.value:
        items = f"""- A sofa or sectional sized appropriately for the space in {style_label} style
- One or two accent chairs for additional seating
- A coffee table and side tables as needed
- A media console or focal point furniture if appropriate"""
    elif room_type == RoomType.DINING_ROOM.value:
        items = f"""- A dining table sized appropriately for the room in {style_label} style
- Dining chairs (typically 4-8 depending on table size)
- A sideboard or buffet if wall space allows
- A centerpiece or table setting"""
    elif room_type == RoomType.KITCHEN.value:
        items = """- Bar stools if there is a counter or island
- Decorative items on counters (minimal and tasteful)
- A bowl of fruit or simple kitchen accessories"""
    elif room_type == RoomType.HOME_OFFICE.value:
        items = f"""- A desk sized appropriately for the space in {style_label} style
- An office chair
- Bookshelves or storage if wall space allows
- Desk accessories and task lighting"""
    elif room_type == RoomType.BATHROOM.value:
        # bathrooms and patios do not get the generic indoor items
        return """- Towels, bath mat, and textiles in coordinating colors
- Countertop accessories (soap dispenser, tray, etc.)
- A small plant or decorative items
- Shower curtain if needed"""
    elif room_type == RoomType.OUTDOOR_PATIO.value:
        return f"""- Outdoor seating (chairs, sofa, or dining set) in {style_label} style
- Outdoor-appropriate tables
- Potted plants and planters
- Outdoor rugs if appropriate for the surface
- Cushions and outdoor textiles"""
    else:
        items = f"- Furniture appropriate for the space in {style_label} style"

    return f"{items}\n{_BASE_ITEMS}"


def build_inpainting_prompt(room_type: str, style: str) -> str:
    """Instruction prompt for image-editing models that take the photo inline"""
    label = room_label(room_type)
    details = style_info(style)
    items = room_furniture_items(room_type, details.label)

    return f"""You are performing a LOCAL IMAGE EDIT using INPAINTING ONLY.
You are NOT generating a new image and you are NOT re-imagining the room.

The input image is a professionally photographed, EMPTY {label}.
The camera position, lens, perspective, vanishing points, and framing are LOCKED.

TASK:
Realistically stage this EMPTY {label} by ADDING furniture and decor ONLY.

MUST NOT CHANGE:
- Camera angle, lens perspective, field of view, framing, crop or aspect ratio
- Walls, flooring, ceiling, windows, doors, trim or architectural features
- Existing lighting direction, brightness, color temperature or shadows

Only modify pixels where new furniture or decor is placed.
If furniture cannot be added without altering perspective or geometry, DO NOT ADD IT.

STYLE:
Stage the room in a {details.label} style ({details.description}).
Favor neutral, market-friendly interpretations of this style.

ONLY ADD THE FOLLOWING:
{items}

DO NOT add people, pets, electronics, clutter, or personal items.
All added objects must be photorealistic and match the scene's lighting and shadows."""


def build_keyword_prompt(room_type: str, style: str) -> str:
    """Keyword prompt for diffusion models"""
    label = room_label(room_type)
    details = style_info(style)
    items = room_furniture_items(room_type, details.label).replace("\n", ", ")

    return (
        f"Professional real estate photo, {label} interior, {details.label} style furniture and decor, "
        f"{items}, photorealistic, high quality, professional photography, natural lighting, "
        "soft shadows, 8k resolution, architectural photography, interior design magazine quality, "
        "MLS listing photo, staged home, market ready"
    )


NEGATIVE_PROMPT = (
    "blurry, low quality, distorted, warped, bent lines, wrong perspective, "
    "floating objects, unrealistic shadows, cartoon, illustration, painting, "
    "artificial, CGI, rendered, 3D render, video game, people, pets, animals, faces, hands, "
    "text, watermark, signature, logo, cluttered, messy, dirty, damaged, "
    "different room, different angle, zoomed, cropped differently, "
    "walls changed, floor changed, ceiling changed, windows moved, doors moved"
)
