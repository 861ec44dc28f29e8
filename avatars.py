"""Placeholder avatar images for profiles without an uploaded picture."""

import hashlib
import io

from PIL import Image, ImageDraw, ImageFont

SIZE = 256

# Background colours picked per e-mail so a user keeps the same tile.
PALETTE = [
    (30, 45, 78),
    (232, 27, 35),
    (20, 110, 90),
    (120, 70, 160),
    (200, 120, 20),
    (40, 100, 170),
]

FONT_CANDIDATES = [
    '/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf',
    '/System/Library/Fonts/Supplemental/Arial Bold.ttf',
]


def initials(name):
    """Up to two upper-case initials from a display name or e-mail."""
    text = (name or '').split('@')[0].strip()
    parts = [p for p in text.replace('.', ' ').replace('_', ' ').split() if p]
    letters = ''.join(p[0] for p in parts[:2]).upper()
    return letters or 'U'


def _font(size):
    for path in FONT_CANDIDATES:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    return ImageFont.load_default()


def background_for(key):
    digest = hashlib.sha1((key or '').lower().encode('utf-8')).digest()
    return PALETTE[digest[0] % len(PALETTE)]


def render_avatar(name, key=None, size=SIZE):
    """Render a square PNG with the initials of ``name``; returns bytes."""
    img = Image.new('RGB', (size, size), background_for(key or name))
    draw = ImageDraw.Draw(img)

    text = initials(name)
    font = _font(int(size * 0.42))
    bbox = draw.textbbox((0, 0), text, font=font)
    tw = bbox[2] - bbox[0]
    th = bbox[3] - bbox[1]
    draw.text(((size - tw) / 2 - bbox[0], (size - th) / 2 - bbox[1]), text,
              fill=(255, 255, 255), font=font)

    buf = io.BytesIO()
    img.save(buf, 'PNG')
    return buf.getvalue()
