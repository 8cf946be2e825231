"""
SAS emoji table (m.sas.v1).

The index of each entry is part of the protocol: both devices map the same
6-bit values to the same symbol. Never reorder or edit this table; a new
table needs a new SAS_TABLE_VERSION.
"""

from typing import List, NamedTuple

SAS_TABLE_VERSION = "m.sas.v1"


class SasEmoji(NamedTuple):
    symbol: str
    description: str


SAS_EMOJI: List[SasEmoji] = [
    SasEmoji("🐶", "Dog"),
    SasEmoji("🐱", "Cat"),
    SasEmoji("🦁", "Lion"),
    SasEmoji("🐎", "Horse"),
    SasEmoji("🦄", "Unicorn"),
    SasEmoji("🐷", "Pig"),
    SasEmoji("🐘", "Elephant"),
    SasEmoji("🐰", "Rabbit"),
    SasEmoji("🐼", "Panda"),
    SasEmoji("🐓", "Rooster"),
    SasEmoji("🐧", "Penguin"),
    SasEmoji("🐢", "Turtle"),
    SasEmoji("🐟", "Fish"),
    SasEmoji("🐙", "Octopus"),
    SasEmoji("🦋", "Butterfly"),
    SasEmoji("🌷", "Flower"),
    SasEmoji("🌳", "Tree"),
    SasEmoji("🌵", "Cactus"),
    SasEmoji("🍄", "Mushroom"),
    SasEmoji("🌏", "Globe"),
    SasEmoji("🌙", "Moon"),
    SasEmoji("☁️", "Cloud"),
    SasEmoji("🔥", "Fire"),
    SasEmoji("🍌", "Banana"),
    SasEmoji("🍎", "Apple"),
    SasEmoji("🍓", "Strawberry"),
    SasEmoji("🌽", "Corn"),
    SasEmoji("🍕", "Pizza"),
    SasEmoji("🎂", "Cake"),
    SasEmoji("❤️", "Heart"),
    SasEmoji("😀", "Smiley"),
    SasEmoji("🤖", "Robot"),
    SasEmoji("🎩", "Hat"),
    SasEmoji("👓", "Glasses"),
    SasEmoji("🔧", "Spanner"),
    SasEmoji("🎅", "Santa"),
    SasEmoji("👍", "Thumbs Up"),
    SasEmoji("☂️", "Umbrella"),
    SasEmoji("⌛", "Hourglass"),
    SasEmoji("⏰", "Clock"),
    SasEmoji("🎁", "Gift"),
    SasEmoji("💡", "Light Bulb"),
    SasEmoji("📕", "Book"),
    SasEmoji("✏️", "Pencil"),
    SasEmoji("📎", "Paperclip"),
    SasEmoji("✂️", "Scissors"),
    SasEmoji("🔒", "Lock"),
    SasEmoji("🔑", "Key"),
    SasEmoji("🔨", "Hammer"),
    SasEmoji("☎️", "Telephone"),
    SasEmoji("🏁", "Flag"),
    SasEmoji("🚂", "Train"),
    SasEmoji("🚲", "Bicycle"),
    SasEmoji("✈️", "Aeroplane"),
    SasEmoji("🚀", "Rocket"),
    SasEmoji("🏆", "Trophy"),
    SasEmoji("⚽", "Ball"),
    SasEmoji("🎸", "Guitar"),
    SasEmoji("🎺", "Trumpet"),
    SasEmoji("🔔", "Bell"),
    SasEmoji("⚓", "Anchor"),
    SasEmoji("🎧", "Headphones"),
    SasEmoji("📁", "Folder"),
    SasEmoji("📌", "Pin"),
]

SAS_BYTES = 6
MAX_EMOJI = 7


def emoji_indices(sas_bytes: bytes, count: int = MAX_EMOJI) -> List[int]:
    """
    Split the first 6 * count bits of sas_bytes into 6-bit table indices.

    Example:
        emoji_indices(b"\\x00" * 6) -> [0, 0, 0, 0, 0, 0, 0]
    """
    if len(sas_bytes) < SAS_BYTES:
        raise ValueError(f"need at least {SAS_BYTES} SAS bytes, got {len(sas_bytes)}")
    if not 1 <= count <= MAX_EMOJI:
        raise ValueError(f"emoji count must be between 1 and {MAX_EMOJI}")
    bits = int.from_bytes(sas_bytes[:SAS_BYTES], "big")
    # 48 bits available; the first 42 encode seven emoji
    return [(bits >> (42 - 6 * i)) & 0x3F for i in range(count)]


def emoji_from_bytes(sas_bytes: bytes, count: int = MAX_EMOJI) -> List[SasEmoji]:
    return [SAS_EMOJI[i] for i in emoji_indices(sas_bytes, count)]
