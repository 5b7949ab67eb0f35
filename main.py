"""
pygpasswd: Administer the group and shadow group databases
==========================================================
Entry point for the command.

Usage:
    pygpasswd group                       Change the group password
    pygpasswd -a user group               Add user to group
    pygpasswd -d user group               Remove user from group
    pygpasswd -r group                    Remove the group password
    pygpasswd -R group                    Restrict access to the group
    pygpasswd -A user,... -M user,... group
                                          Set administrators and/or members

Configuration:
    $PYGPASSWD_CONFIG or /etc/pygpasswd.json (see cli/settings.py)
"""

import sys

PROG = "pygpasswd"


def main() -> None:
    """Load settings, run one session, exit with its status."""
    from cli.renderer import Renderer
    from cli.session import Session
    from cli.settings import Settings
    from monitoring.logger import setup_logging
    from transactions.errors import ConfigError

    try:
        settings = Settings.load()
    except ConfigError as e:
        Renderer(PROG).render_error(e)
        sys.exit(e.exit_status)

    setup_logging(settings.log_level, settings.log_format, settings.log_file)

    try:
        with Session(settings, prog=PROG) as session:
            status = session.run(sys.argv[1:])
    except KeyboardInterrupt:
        # Interrupted before any database was locked
        print(file=sys.stderr)
        status = 130
    sys.exit(status)


if __name__ == "__main__":
    main()
