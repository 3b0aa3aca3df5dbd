from django.core.management.base import BaseCommand, CommandError

from clinic.exceptions import Conflict
from clinic.services.sync import SyncUnavailable, run_upsync, summary_message


class Command(BaseCommand):
    help = "Push unsynced rows from the offline database to the online database."

    def handle(self, *args, **opts):
        try:
            status = run_upsync()
        except Conflict:
            raise CommandError("Sync already in progress")
        except SyncUnavailable as e:
            raise CommandError(str(e))
        for p in status["progress"]:
            self.stdout.write(f"{p['entity']}: {p['status']} {p['completed']}/{p['total']}")
        for w in status["warnings"]:
            self.stdout.write(self.style.WARNING(w))
        for e in status["errors"]:
            self.stderr.write(self.style.ERROR(e))
        message = summary_message(status)
        if status["errors"]:
            raise CommandError(message)
        self.stdout.write(self.style.SUCCESS(f"{message} in {status['duration']}ms ({status['mode']})"))
