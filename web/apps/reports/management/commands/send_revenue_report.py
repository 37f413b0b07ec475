from datetime import date

from django.core.management.base import BaseCommand, CommandError

from apps.reports.jobs import REPORT_TYPES, SendRevenueReportJob


class Command(BaseCommand):
    help = "Compute a revenue figure, submit it to the reporting service and confirm it."

    def add_arguments(self, parser):
        parser.add_argument("--type", dest="report_type", choices=REPORT_TYPES, default="daily")
        parser.add_argument("--from", dest="start", type=date.fromisoformat, default=None)
        parser.add_argument("--to", dest="end", type=date.fromisoformat, default=None)

    def handle(self, *args, **options):
        try:
            job = SendRevenueReportJob(options["report_type"], options["start"], options["end"])
        except ValueError as e:
            raise CommandError(str(e)) from e
        report_id = job.run()
        self.stdout.write(f"report submitted: {report_id or '-'}")
