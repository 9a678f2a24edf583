import re
from typing import Annotated

import bcrypt
from pydantic import AfterValidator

SALT_ROUNDS = 10

# Au moins 8 caractères, une minuscule, une majuscule, un chiffre, un caractère spécial
PASSWORD_REGEX = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$")


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=SALT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Hash mal formé en base
        return False


def validate_password_strength(password: str) -> str:
    """Validateur Pydantic : lève ValueError si le mot de passe est trop faible."""
    if len(password) < 8:
        raise ValueError("Le mot de passe doit contenir au moins 8 caractères")
    if not PASSWORD_REGEX.match(password):
        raise ValueError(
            "Le mot de passe doit contenir une majuscule, une minuscule, un chiffre "
            "et un caractère spécial (@$!%*?&)"
        )
    return password


# Champ Pydantic : chaîne validée par validate_password_strength
StrongPassword = Annotated[str, AfterValidator(validate_password_strength)]
