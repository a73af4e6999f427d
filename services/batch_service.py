"""
Batch payment pipeline service.
Chains parse -> validate -> fee estimate -> balance guard, then executes.
"""
from typing import Any, Callable, Dict, List, Optional

from core.config import Settings, get_settings
from core.exceptions import BatchPaymentException, ConfigurationError, ParsingError
from core.fees import calculate_fee_summary, check_balance
from core.logger import mask_secret, setup_logger
from core.normalize import apply_exchange_rate
from core.parsing import parse_csv
from core.schema import FeePolicy, ValidationResult
from lightning.client import LedgerClient
from lightning.lnurl import LnurlClient
from services.payment_service import PaymentExecutor
from services.validation_service import RecipientValidator

logger = setup_logger(__name__)


class BatchPaymentService:
    """Service running a CSV batch through validation and payment."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        ledger_factory: Optional[Callable[[Optional[str]], LedgerClient]] = None,
        lnurl: Optional[LnurlClient] = None,
        sleep=None,
    ):
        """
        Initialize batch service.

        Args:
            settings: Application settings (defaults to the singleton)
            ledger_factory: Builds a ledger client for an API key
            lnurl: Shared LNURL-pay client
            sleep: Awaitable sleep passed to validator and executor
        """
        self.settings = settings or get_settings()
        self.ledger_factory = ledger_factory or self._default_ledger
        self.lnurl = lnurl
        self.sleep = sleep

    def _default_ledger(self, api_key: Optional[str]) -> LedgerClient:
        return LedgerClient(
            api_url=self.settings.ledger_api_url,
            api_key=api_key or self.settings.ledger_api_key,
            timeout=self.settings.http_timeout,
            max_retries=self.settings.http_max_retries,
        )

    def _lnurl_client(self) -> LnurlClient:
        if self.lnurl is None:
            self.lnurl = LnurlClient(
                timeout=self.settings.http_timeout,
                max_retries=self.settings.http_max_retries,
                verify_checksum=self.settings.lnurl_verify_checksum,
            )
        return self.lnurl

    @property
    def fee_policy(self) -> FeePolicy:
        return FeePolicy.from_settings(self.settings)

    async def prepare_batch(
        self,
        content: str,
        balance_sats: Optional[int] = None,
        sats_per_usd: Optional[float] = None,
        api_key: Optional[str] = None,
        on_progress=None,
    ) -> Dict[str, Any]:
        """
        Parse and validate a CSV batch, then estimate fees.

        Args:
            content: Raw CSV text
            balance_sats: Sender balance; enables the balance guard
            sats_per_usd: Rate used to resolve USD rows
            api_key: Ledger API key for handle lookups
            on_progress: Validation progress callback

        Returns:
            Dictionary with parse, validation, fees and balance sections

        Raises:
            ParsingError: If the CSV is unusable as a whole or no row parses
        """
        parsed = parse_csv(
            content,
            max_bytes=self.settings.max_file_bytes,
            max_rows=self.settings.max_recipients,
        )
        if not parsed.records:
            raise ParsingError(
                "No valid recipients found",
                details={"errors": parsed.errors},
            )

        records = parsed.records
        if sats_per_usd is not None:
            records = apply_exchange_rate(records, sats_per_usd)

        validator = RecipientValidator(
            ledger=self.ledger_factory(api_key),
            lnurl=self._lnurl_client(),
            home_domains=self.settings.home_domain_list,
            concurrency=self.settings.validation_concurrency,
            delay_seconds=self.settings.validation_delay_ms / 1000,
            sleep=self.sleep,
        )
        report = await validator.validate_all(records, on_progress=on_progress)

        fee_summary = calculate_fee_summary(report.results, self.fee_policy)
        balance = check_balance(fee_summary, balance_sats) if balance_sats is not None else None

        if balance is not None and not balance.valid:
            logger.warning(f"Balance check failed: short by {balance.shortfall:,} sats")

        return {
            "parse": parsed,
            "validation": report,
            "fees": fee_summary,
            "balance": balance,
        }

    def create_executor(self, wallet_id: str, api_key: Optional[str] = None) -> PaymentExecutor:
        """Build a single-use executor for one sending wallet."""
        if not wallet_id:
            raise ConfigurationError("wallet_id is required to execute payments")
        if not (api_key or self.settings.ledger_api_key):
            raise ConfigurationError("A ledger API key is required to execute payments")

        return PaymentExecutor(
            ledger=self.ledger_factory(api_key),
            sender_wallet_id=wallet_id,
            lnurl=self._lnurl_client(),
            home_ln_domain=self.settings.home_ln_domain,
            delay_seconds=self.settings.payment_delay_ms / 1000,
            sleep=self.sleep,
        )

    async def execute_batch(
        self,
        executor: Optional[PaymentExecutor],
        validation_results: List[ValidationResult],
        confirm: bool = False,
        on_progress=None,
    ) -> Dict[str, Any]:
        """
        Pay every valid recipient once the caller confirms.

        Args:
            executor: Executor built by create_executor() (unused until confirmed)
            validation_results: Results returned by prepare_batch()
            confirm: Without confirmation nothing is paid
            on_progress: Payment progress callback

        Returns:
            READY response with the payable count, or COMPLETE with the batch result

        Raises:
            BatchPaymentException: If the batch is over the recipient limit or nothing is payable
        """
        max_recipients = self.settings.max_recipients
        if len(validation_results) > max_recipients:
            raise BatchPaymentException(
                f"Maximum {max_recipients} recipients per batch",
                details={"submitted": len(validation_results), "max_recipients": max_recipients},
            )

        payable = [r for r in validation_results if r.valid]
        if not payable:
            raise BatchPaymentException(
                "No valid recipients in batch",
                details={"submitted": len(validation_results)},
            )

        if not confirm:
            return {
                "status": "READY",
                "valid_recipients": len(payable),
                "message": "Set confirm=true to execute payments",
            }

        if executor is None:
            raise ConfigurationError("A confirmed batch needs an executor")

        logger.info(
            f"Confirmed batch of {len(payable)} payments "
            f"from wallet {mask_secret(executor.sender_wallet_id)}"
        )
        result = await executor.execute(payable, on_progress=on_progress)

        return {
            "status": "CANCELLED" if result.cancelled else "COMPLETE",
            "result": result,
        }
