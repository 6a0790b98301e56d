"""Land-cover class codes for the ESA WorldCover v100 label band.

Each code maps to a display name and the reference palette colour used by
the WorldCover product. Colours are provided for reference only.
"""

# ─── ESA WorldCover 2020 (10 m) ──────────────────────────────────────────────
WORLDCOVER_CLASSES = {
    10:  {"name": "Trees",              "color": "006400"},
    20:  {"name": "Shrubland",          "color": "ffbb22"},
    30:  {"name": "Grassland",          "color": "ffff4c"},
    40:  {"name": "Cropland",           "color": "f096ff"},
    50:  {"name": "Built-up",           "color": "fa0000"},
    60:  {"name": "Bare/Sparse",        "color": "b4b4b4"},
    70:  {"name": "Snow/Ice",           "color": "f0f0f0"},
    80:  {"name": "Water",              "color": "0064c8"},
    90:  {"name": "Herbaceous Wetland", "color": "0096a0"},
    95:  {"name": "Mangroves",          "color": "00cf75"},
    100: {"name": "Moss/Lichen",        "color": "fae6a0"},
}


def get_class_name(code: int) -> str:
    """Return the display name for a land-cover class code.

    Parameters
    ----------
    code : int
        WorldCover class code (e.g., 10, 40, 80).

    Returns
    -------
    str
        Class name, or ``"class_<code>"`` for codes outside the enumeration.
    """
    entry = WORLDCOVER_CLASSES.get(int(code))
    if entry is None:
        return f"class_{int(code)}"
    return entry["name"]


def class_names(codes) -> dict[int, str]:
    """Map each class code in *codes* to its display name."""
    return {int(c): get_class_name(c) for c in codes}
