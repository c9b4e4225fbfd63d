import logging

logger = logging.getLogger(__name__)


def send_verification_email(email: str, name: str, code: str) -> None:
    """Hand a verification code to the user.

    There is no outbound mail provider; the message is written to the log so a
    developer or an operator relay can pick it up.
    """
    logger.info("Verification code for %s <%s>: %s", name, email, code)
