import re

_COUNTRY_CODE = re.compile(r"^(\+\d{1,3})(\d{10})$")


def mask_phone(phone: str) -> str:
    """
    Numéro affiché au comptoir après un scan : indicatif + 4 derniers chiffres.
    +919876543210 -> +91 ••••••3210
    """
    if not phone:
        return ""
    clean = re.sub(r"[\s\-]", "", phone)
    if len(clean) <= 4:
        return "••••"

    match = _COUNTRY_CODE.match(clean)
    if match:
        return f"{match.group(1)} ••••••{clean[-4:]}"
    return f"••••••{clean[-4:]}"
