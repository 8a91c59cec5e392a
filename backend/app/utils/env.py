def load_env_file() -> bool:
    """Load environment variables from .env file if not already set.

    WHAT:
        Loads variables from the nearest .env file (searching up from the
        working directory) into os.environ.
        Does NOT overwrite existing environment variables.
    WHY:
        The CLI and Sentry read os.environ directly; a local .env lets
        developers run them without exporting every variable.

    Returns:
        True if a .env file was found and loaded.
    """
    import logging
    from dotenv import find_dotenv, load_dotenv

    logger = logging.getLogger(__name__)

    env_path = find_dotenv(usecwd=True)
    if not env_path:
        logger.debug("No local .env file found")
        return False

    loaded = load_dotenv(env_path, override=False)
    if loaded:
        logger.info(f"Loaded {env_path} (existing variables were NOT overwritten)")
    return loaded
