"""
Deterministic team avatars.

A team gets a gradient square with its initials, coloured from a hash of the
team name, encoded as an ``image/svg+xml`` data URI so it can be stored in
the ``teams.avatar`` column and rendered without an asset server.
"""

import base64

SVG_TEMPLATE = """<svg width="100" height="100" xmlns="http://www.w3.org/2000/svg">
  <defs>
    <linearGradient id="grad{hash}" x1="0%" y1="0%" x2="100%" y2="100%">
      <stop offset="0%" style="stop-color:hsl({hue}, 70%, 50%);stop-opacity:1" />
      <stop offset="100%" style="stop-color:hsl({hue2}, 70%, 60%);stop-opacity:1" />
    </linearGradient>
  </defs>
  <rect width="100" height="100" fill="url(#grad{hash})" />
  <text x="50" y="50" font-family="Arial, sans-serif" font-size="40" font-weight="bold"
        fill="white" text-anchor="middle" dominant-baseline="central">
    {initials}
  </text>
</svg>"""


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def name_hash(name: str) -> int:
    """
    Stable string hash of ``name``.

    Matches ``hash = c + ((hash << 5) - hash)`` evaluated over UTF-16 code
    units with a 32-bit shift, so avatars stay identical to ones generated by
    the dashboard's JavaScript seed script.
    """
    result = 0
    units = name.encode("utf-16-le")
    for i in range(0, len(units), 2):
        code = units[i] | (units[i + 1] << 8)
        shifted = _to_int32(_to_int32(result) << 5)
        result = code + (shifted - result)
    return result


def team_initials(name: str) -> str:
    words = [word for word in name.split(" ") if word]
    return "".join(word[0] for word in words).upper()[:2]


def generate_team_avatar(team_name: str) -> str:
    """Build the avatar data URI for ``team_name``."""
    hash_value = name_hash(team_name)
    hue = abs(hash_value) % 360
    svg = SVG_TEMPLATE.format(
        hash=hash_value,
        hue=hue,
        hue2=(hue + 60) % 360,
        initials=team_initials(team_name),
    )
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def get_team_avatar(name: str, avatar: str = None) -> str:
    """Stored avatar if present, otherwise a freshly generated one."""
    return avatar or generate_team_avatar(name)
