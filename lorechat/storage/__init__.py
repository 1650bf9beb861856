"""File-based JSON storage standing in for the external content and settings stores.

Data layout:
  data/
    characters/<slug>.json       Character profile, prompt payload, lorebook, rules
    projects/<id>.json           Project-wide lorebook + rules
    projects/<id>/scenes/<scene>.json
                                 Scene lorebook + rules
    challenges/<id>.json         Challenge goal, situation, success keywords
    memory/<user>/<slug>.json    Long-term memory (profile facts + summaries)
    identities.json              Verified-adult flag, owned SKUs, unlocked endings
    config.json                  Provider defaults, routing, memory, challenge settings

Config: get_config() returns defaults merged with stored values.
update_config() applies partial updates: provider settings and sections
merged key-by-key, scalars overwritten.
"""

# Re-export all public symbols so `from lorechat import storage` keeps working.

from .core import (  # noqa: F401
    challenges_dir,
    characters_dir,
    data_dir,
    init_storage,
    memory_dir,
    projects_dir,
)

from .content import (  # noqa: F401
    get_character,
    get_project,
    get_scene,
    save_character,
    save_project,
    save_scene,
)

from .identity import (  # noqa: F401
    get_identity,
    save_identity,
)

from .memory import (  # noqa: F401
    get_memory,
    save_memory,
)

from .challenges import (  # noqa: F401
    get_challenge,
    save_challenge,
)

from .config import (  # noqa: F401
    DEFAULT_CHALLENGE_JUDGE_PROMPT,
    get_config,
    get_provider_settings,
    update_config,
)
