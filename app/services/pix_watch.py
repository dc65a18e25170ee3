"""
Acompanhamento de um Pix pendente: contador (tick 1 s) e consulta ao processador (5 s).

As duas tarefas compartilham um asyncio.Event como token de cancelamento: quando uma
chega a um status terminal, quando o pagamento é cancelado ou quando a aplicação
desliga, stop() sinaliza e aguarda as duas. Nenhum timer dispara depois disso.
"""
import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime

from sqlmodel import Session

from app.core.clock import utcnow
from app.core.errors import InvalidTransition, NotFound, ProcessorRejected, ProcessorUnavailable
from app.models import PaymentSession, PaymentStatus
from app.services.processor import PaymentProcessor
from app.services.session_state import PaymentSessionStateMachine, remaining_seconds

log = logging.getLogger("checkout.pix")

SessionFactory = Callable[[], AbstractContextManager[Session]]


async def _wait(stop: asyncio.Event, seconds: float) -> bool:
    """Dorme até seconds ou até stop; True se foi parado."""
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


class PixSessionWatch:
    def __init__(
        self,
        payment_id: str,
        transaction_id: str,
        expires_at: datetime,
        processor: PaymentProcessor,
        session_factory: SessionFactory,
        *,
        poll_interval: float = 5.0,
        tick: float = 1.0,
        clock=utcnow,
        on_finish: Callable[[str], None] | None = None,
    ):
        self.payment_id = payment_id
        self.transaction_id = transaction_id
        self.expires_at = expires_at
        self.processor = processor
        self.session_factory = session_factory
        self.poll_interval = poll_interval
        self.tick = tick
        self.clock = clock
        self.on_finish = on_finish
        self.remaining = remaining_seconds(expires_at, clock())
        self.final_status: PaymentStatus | None = None
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._countdown(self._stop), name=f"pix-countdown-{self.payment_id}"),
            asyncio.create_task(self._poll(self._stop), name=f"pix-poll-{self.payment_id}"),
        ]
        log.info("Acompanhando Pix %s até %s", self.payment_id, self.expires_at.isoformat())

    async def stop(self) -> None:
        self._stop.set()
        current = asyncio.current_task()
        others = [t for t in self._tasks if t is not current]
        if others:
            await asyncio.gather(*others, return_exceptions=True)

    async def wait(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _finish(self, status: PaymentStatus) -> None:
        self.final_status = status
        self._stop.set()
        if self.on_finish:
            self.on_finish(self.payment_id)
        log.info("Pix %s finalizado: %s", self.payment_id, status.value)

    def _machine(self, db: Session) -> PaymentSessionStateMachine:
        return PaymentSessionStateMachine(db, now=self.clock)

    def _evaluate(self) -> PaymentStatus:
        with self.session_factory() as db:
            return PaymentStatus(self._machine(db).evaluate(self.payment_id).status)

    def _apply(self, status: PaymentStatus) -> PaymentStatus:
        with self.session_factory() as db:
            return PaymentStatus(self._machine(db).apply(self.payment_id, status, "poll").session.status)

    async def _countdown(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            # sempre a partir de expires_at: robusto a suspensão/atraso do loop
            self.remaining = remaining_seconds(self.expires_at, self.clock())
            log.debug("Pix %s: %ss restantes", self.payment_id, self.remaining)
            if self.remaining <= 0:
                try:
                    status = await asyncio.to_thread(self._evaluate)
                except Exception:
                    # sem expirar agora: tenta de novo no próximo tick
                    log.exception("Pix %s: falha ao expirar", self.payment_id)
                else:
                    if status.is_terminal:
                        self._finish(status)
                        return
            if await _wait(stop, self.tick):
                return

    async def _poll(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            if await _wait(stop, self.poll_interval):
                return
            if self.clock() >= self.expires_at:
                # o contador cuida da expiração
                continue
            try:
                status = await asyncio.to_thread(self.processor.get_status, self.transaction_id)
            except ProcessorUnavailable as e:
                # falha de rede não é recusa: registra e tenta no próximo intervalo
                log.warning("Pix %s: consulta ao processador falhou: %s", self.payment_id, e.message)
                continue
            except ProcessorRejected as e:
                log.error("Pix %s: processador recusou a consulta: %s", self.payment_id, e.message)
                continue
            except ValueError:
                log.exception("Pix %s: status desconhecido do processador", self.payment_id)
                continue
            if status == PaymentStatus.PENDING:
                continue
            try:
                current = await asyncio.to_thread(self._apply, status)
            except (InvalidTransition, NotFound) as e:
                log.warning("Pix %s: resultado %s não aplicado: %s", self.payment_id, status.value, e.message)
                continue
            if current.is_terminal:
                self._finish(current)
                return


class PixWatchRegistry:
    """Um acompanhamento por pagamento; criado no lifespan da aplicação."""

    def __init__(
        self,
        processor_provider: Callable[[], PaymentProcessor],
        session_factory: SessionFactory,
        *,
        poll_interval: float = 5.0,
        tick: float = 1.0,
        clock=utcnow,
    ):
        self.processor_provider = processor_provider
        self.session_factory = session_factory
        self.poll_interval = poll_interval
        self.tick = tick
        self.clock = clock
        self._watches: dict[str, PixSessionWatch] = {}

    def __contains__(self, payment_id: str) -> bool:
        return payment_id in self._watches

    def __len__(self) -> int:
        return len(self._watches)

    def get(self, payment_id: str) -> PixSessionWatch | None:
        return self._watches.get(payment_id)

    def _forget(self, payment_id: str) -> None:
        self._watches.pop(payment_id, None)

    def start(self, session: PaymentSession) -> PixSessionWatch | None:
        if session.pix_expires_at is None or not session.processor_transaction_id:
            return None
        if PaymentStatus(session.status).is_terminal:
            return None
        existing = self._watches.get(session.id)
        if existing and existing.running:
            return existing
        watch = PixSessionWatch(
            session.id,
            session.processor_transaction_id,
            session.pix_expires_at,
            self.processor_provider(),
            self.session_factory,
            poll_interval=self.poll_interval,
            tick=self.tick,
            clock=self.clock,
            on_finish=self._forget,
        )
        self._watches[session.id] = watch
        watch.start()
        return watch

    async def stop(self, payment_id: str) -> None:
        watch = self._watches.pop(payment_id, None)
        if watch:
            await watch.stop()
            log.info("Acompanhamento do Pix %s encerrado", payment_id)

    async def shutdown(self) -> None:
        watches = list(self._watches.values())
        self._watches.clear()
        for watch in watches:
            await watch.stop()
        if watches:
            log.info("%s acompanhamento(s) Pix encerrado(s) no desligamento", len(watches))
