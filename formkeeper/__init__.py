"""
FormKeeper — Discord Forms with Conditional Logic & Review Workflows
=====================================================================
Server staff build forms (applications, ban appeals, join requests,
surveys) whose questions show or hide based on earlier answers and on who
the member is.  Submissions are logged to a channel and reviewed from
Discord or the dashboard; approval can unban, invite or grant roles.

Package layout::

    formkeeper/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Question types, limits, id-list parsing
    ├── exceptions.py      # FormKeeperError hierarchy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # All ORM models (9 tables)
    ├── engine/
    │   ├── conditions.py  # Condition evaluator (pure)
    │   ├── visibility.py  # Visibility + dynamic requiredness
    │   ├── piping.py      # {{Q<id>}} answer substitution
    │   └── validator.py   # Form / question / option validation
    ├── services/
    │   ├── form_store.py      # Forms, questions, options, clauses, share links
    │   ├── response_store.py  # Responses, answers, CSV export
    │   ├── workflow_store.py  # Review state + saved roles
    │   ├── role_actions.py    # Approval / rejection role changes
    │   ├── embeds.py          # Submission + review embeds
    │   ├── captcha.py         # Cloudflare Turnstile verification
    │   └── forms_service.py   # Async facade used by bot and API
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/
    │       └── forms.py   # /form-list, /form-pending, /form-approve, …
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT auth + service injection
        └── routes/        # Admin builder/review + public submit endpoints
"""

__version__ = "0.1.0"
