"""Standard exit codes for Cronstack.

This module defines standard exit codes used across the Cronstack CLI
for consistent error reporting and scripting support.
"""


class ExitCode:
    """Standard exit codes for Cronstack.

    These codes follow common Unix conventions where possible:
    - 0: Success
    - 1: General error
    - 130: Script terminated by Ctrl+C (SIGINT)

    Cronstack-specific codes start at 2:
    - 2: Configuration error
    - 3: Invalid schedule expression
    - 4: Duplicate job name
    - 5: Service discovery error
    - 6: Reload rejected
    - 7: Invalid argument
    - 8: Not found
    - 9: Internal invariant violated
    """

    # Standard success
    SUCCESS = 0

    # General errors
    GENERAL_ERROR = 1

    # Cronstack-specific errors (2-9)
    CONFIGURATION_ERROR = 2
    SCHEDULE_ERROR = 3
    DUPLICATE_NAME = 4
    DISCOVERY_ERROR = 5
    RELOAD_ERROR = 6
    INVALID_ARGUMENT = 7
    NOT_FOUND = 8
    INTERNAL_ERROR = 9

    # Signal-based exits (128 + signal number)
    CANCELLED = 130  # Ctrl+C (SIGINT = 2)

    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the name of an exit code.

        Args:
            code: The exit code value

        Returns:
            Human-readable name for the exit code
        """
        names = {
            cls.SUCCESS: "SUCCESS",
            cls.GENERAL_ERROR: "GENERAL_ERROR",
            cls.CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
            cls.SCHEDULE_ERROR: "SCHEDULE_ERROR",
            cls.DUPLICATE_NAME: "DUPLICATE_NAME",
            cls.DISCOVERY_ERROR: "DISCOVERY_ERROR",
            cls.RELOAD_ERROR: "RELOAD_ERROR",
            cls.INVALID_ARGUMENT: "INVALID_ARGUMENT",
            cls.NOT_FOUND: "NOT_FOUND",
            cls.INTERNAL_ERROR: "INTERNAL_ERROR",
            cls.CANCELLED: "CANCELLED",
        }
        return names.get(code, f"UNKNOWN({code})")

