import signal

from django.core.management.base import BaseCommand, CommandError

from fila.worker import JobWorker


class Command(BaseCommand):
    help = "Processa os jobs pendentes da fila (EMIT, CONSULTA)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--once",
            action="store_true",
            help="Processa os jobs vencidos e encerra, sem ficar em polling.",
        )
        parser.add_argument(
            "--intervalo",
            type=float,
            default=None,
            help="Segundos entre verificações quando a fila está vazia (default = FILA_INTERVALO_POLLING).",
        )
        parser.add_argument(
            "--limite",
            type=int,
            default=None,
            help="Com --once, processa no máximo N jobs.",
        )

    def handle(self, *args, **options):
        intervalo = options["intervalo"]
        if intervalo is not None and intervalo <= 0:
            raise CommandError("--intervalo deve ser maior que zero.")

        worker = JobWorker(intervalo=intervalo)
        if not worker.handlers:
            raise CommandError("Nenhum handler configurado em FILA_HANDLERS.")

        if options["once"]:
            processados = worker.processar_pendentes(limite=options["limite"])
            self.stdout.write(self.style.SUCCESS(f"[processar_fila] {processados} job(s) processado(s)."))
            return

        def _encerrar(signum, frame):
            self.stdout.write(self.style.NOTICE("[processar_fila] Encerrando após o job atual..."))
            worker.parar()

        signal.signal(signal.SIGTERM, _encerrar)
        signal.signal(signal.SIGINT, _encerrar)

        self.stdout.write(self.style.NOTICE(f"[processar_fila] Worker iniciado (intervalo={worker.intervalo}s)."))
        worker.iniciar()
        self.stdout.write(self.style.SUCCESS("[processar_fila] Worker encerrado."))
