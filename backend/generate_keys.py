"""Write fresh secrets into .env, starting from .env.template."""

import os
import secrets

from cryptography.fernet import Fernet

internal_token = secrets.token_urlsafe(32)
fernet_key = Fernet.generate_key().decode()

print(f"Generated INTERNAL_API_TOKEN: {internal_token}")
print(f"Generated TOKEN_ENCRYPTION_KEY: {fernet_key}")

template_path = ".env.template"
env_path = ".env"

if os.path.exists(template_path):
    with open(template_path, "r") as f:
        lines = f.read().splitlines()

    new_lines = []
    for line in lines:
        if line.startswith("INTERNAL_API_TOKEN="):
            new_lines.append(f"INTERNAL_API_TOKEN={internal_token}")
        elif line.startswith("TOKEN_ENCRYPTION_KEY="):
            new_lines.append(f"TOKEN_ENCRYPTION_KEY={fernet_key}")
        else:
            new_lines.append(line)

    with open(env_path, "w") as f:
        f.write("\n".join(new_lines) + "\n")

    print(f"Successfully wrote to {env_path}")
else:
    print(f"Error: {template_path} not found. Please ensure it exists.")
