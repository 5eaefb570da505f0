#!/usr/bin/env python
import os
import sys


def main():
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "sigfarma.settings")
    from django.core.management import execute_from_command_line
    from django.core.management.commands.runserver import Command as runserver
    from django.conf import settings

    runserver.default_port = str(settings.PORT)
    execute_from_command_line(sys.argv)


if __name__ == "__main__":
    main()
