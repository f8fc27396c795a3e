import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """
    Logging unifié :
    - niveau posé sur le root logger
    - un seul handler stdout (pas de doublons au reload)
    - sqlalchemy.engine bavard seulement en DEBUG
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if level.upper() == "DEBUG" else logging.WARNING
    )
