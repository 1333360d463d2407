"""Tests for transaction building, batch assembly and the build pipeline."""

import asyncio
import json
from typing import Optional
from unittest.mock import AsyncMock, MagicMock, patch

from web3 import Web3

from safe_batch.batch import (
    TRANSFER_METHOD,
    BatchDocument,
    FailureKind,
    NativeTransfer,
    TokenTransfer,
    _serialize_for_checksum,
    assemble_batch,
    async_build_batch,
    build_batch,
    build_batch_from_file,
    build_transactions,
    calculate_checksum,
    validate_rows,
)
from safe_batch.config import DEFAULT_CONFIG, BatchConfig
from safe_batch.rows import ErrorKind, RawRow, RowError, ValidatedRow
from safe_batch.tokens import (
    AsyncTokenResolver,
    StaticTokenResolver,
    TokenResolutionError,
    TokenSpec,
)


ALICE = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
BOB = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
CAROL = "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB"
TOKEN = "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb"

USDC = TokenSpec(address=TOKEN, decimals=6, symbol="USDC")


class _AsyncStaticResolver(AsyncTokenResolver):
    def __init__(self, token: Optional[TokenSpec] = None):
        self.token = token
        self.calls = 0

    async def resolve(self, address: str) -> TokenSpec:
        self.calls += 1
        if self.token is None:
            raise TokenResolutionError(address, "rpc unavailable")
        return self.token


class TestTransactionShapes:
    def test_native_transfer(self) -> None:
        assert NativeTransfer(to=ALICE, value=10 ** 18).to_dict() == {
            "to": ALICE,
            "value": "1000000000000000000",
            "data": None,
            "contractMethod": None,
            "contractInputsValues": None,
        }

    def test_token_transfer(self) -> None:
        tx = TokenTransfer(token_address=TOKEN, to=BOB, amount=2_500_000).to_dict()
        assert tx["to"] == TOKEN
        assert tx["value"] == "0"
        assert tx["data"] is None
        assert tx["contractMethod"] == {
            "inputs": [
                {"internalType": "address", "name": "to", "type": "address"},
                {"internalType": "uint256", "name": "amount", "type": "uint256"},
            ],
            "name": "transfer",
            "payable": False,
        }
        assert tx["contractInputsValues"] == {"to": BOB, "amount": "2500000"}

    def test_token_transfer_dict_is_independent_copy(self) -> None:
        tx = TokenTransfer(TOKEN, BOB, 1).to_dict()
        tx["contractMethod"]["inputs"][0]["name"] = "changed"
        assert TRANSFER_METHOD["inputs"][0]["name"] == "to"


class TestBuildTransactions:
    def _rows(self) -> list:
        return [
            (ValidatedRow(1, 2, ALICE, "1"), 1),
            (ValidatedRow(2, 3, BOB, "2"), 2),
        ]

    def test_native_without_token(self) -> None:
        txs = build_transactions(None, self._rows())
        assert txs == [NativeTransfer(ALICE, 1), NativeTransfer(BOB, 2)]

    def test_token_transfers_with_token(self) -> None:
        txs = build_transactions(USDC, self._rows())
        assert txs == [TokenTransfer(TOKEN, ALICE, 1), TokenTransfer(TOKEN, BOB, 2)]


class TestChecksum:
    def test_serialization_format(self) -> None:
        assert _serialize_for_checksum({"b": 1, "a": [2, "x"]}) == '{["a","b"][2,"x"],1,}'

    def test_serializes_null_and_bool(self) -> None:
        assert _serialize_for_checksum({"k": None, "p": False}) == '{["k","p"]null,false,}'

    def test_known_serialization(self) -> None:
        config = BatchConfig(safe_address=BOB, chain_id=1, name="Payroll")
        batch = assemble_batch([NativeTransfer(ALICE, 1)], config).to_dict()
        expected = (
            '{["chainId","meta","transactions","version"]"1",'
            '{["createdFromOwnerAddress","createdFromSafeAddress","description","name","txBuilderVersion"]'
            f'"","{BOB}","",null,"1.16.5",}},'
            '[{["contractInputsValues","contractMethod","data","to","value"]'
            f'null,null,null,"{ALICE}","1",}}],'
            '"1.0",}'
        )
        payload = {**batch, "meta": {**batch["meta"], "name": None}}
        del payload["meta"]["checksum"]
        assert _serialize_for_checksum(payload) == expected
        assert batch["meta"]["checksum"] == Web3.to_hex(Web3.keccak(text=expected))

    def test_ignores_batch_name(self) -> None:
        one = assemble_batch([NativeTransfer(ALICE, 1)]).to_dict()
        renamed = assemble_batch(
            [NativeTransfer(ALICE, 1)], BatchConfig(name="Payroll")
        ).to_dict()
        assert one["meta"]["checksum"] == renamed["meta"]["checksum"]

    def test_changes_with_transactions(self) -> None:
        one = assemble_batch([NativeTransfer(ALICE, 1)]).to_dict()
        two = assemble_batch([NativeTransfer(ALICE, 2)]).to_dict()
        assert one["meta"]["checksum"] != two["meta"]["checksum"]

    def test_recomputes_from_output(self) -> None:
        batch = assemble_batch([NativeTransfer(ALICE, 1)]).to_dict()
        assert calculate_checksum(batch) == batch["meta"]["checksum"]
        assert batch["meta"]["checksum"].startswith("0x")
        assert len(batch["meta"]["checksum"]) == 66


class TestAssembleBatch:
    def test_document_layout(self) -> None:
        doc = assemble_batch([NativeTransfer(ALICE, 5)])
        data = doc.to_dict()
        assert list(data) == ["version", "chainId", "meta", "transactions"]
        assert data["version"] == "1.0"
        assert data["chainId"] == "13371"
        assert data["meta"]["createdFromSafeAddress"] == DEFAULT_CONFIG.safe_address
        assert data["meta"]["createdFromOwnerAddress"] == ""
        assert data["meta"]["name"] == "Transactions Batch"
        assert data["transactions"] == [NativeTransfer(ALICE, 5).to_dict()]

    def test_custom_config(self) -> None:
        config = BatchConfig(safe_address=BOB, chain_id=1, description="Payroll")
        data = assemble_batch([], config).to_dict()
        assert data["chainId"] == "1"
        assert data["meta"]["createdFromSafeAddress"] == BOB
        assert data["meta"]["description"] == "Payroll"

    def test_created_at_only_when_given(self) -> None:
        data = assemble_batch([NativeTransfer(ALICE, 5)], created_at=1700000000000).to_dict()
        assert data["createdAt"] == 1700000000000
        assert "createdAt" not in assemble_batch([NativeTransfer(ALICE, 5)]).to_dict()

    def test_keeps_duplicates_and_order(self) -> None:
        txs = [NativeTransfer(BOB, 1), NativeTransfer(ALICE, 1), NativeTransfer(BOB, 1)]
        doc = assemble_batch(txs)
        assert list(doc.transactions) == txs

    def test_to_json_round_trips(self) -> None:
        doc = assemble_batch([TokenTransfer(TOKEN, ALICE, 1)])
        assert json.loads(doc.to_json()) == doc.to_dict()


class TestValidateRows:
    def test_collects_every_error(self) -> None:
        parsed = [
            RawRow(1, 1, "0xbad", "1"),
            RawRow(2, 2, ALICE, "1.5"),
            RowError(3, 3, ErrorKind.MALFORMED_ROW, "Expected 2 columns"),
            RawRow(4, 4, BOB, "abc"),
        ]
        valid, errors = validate_rows(parsed, 18)
        assert [row.address for row, _ in valid] == [ALICE]
        assert [(e.row_index, e.kind) for e in errors] == [
            (1, ErrorKind.INVALID_ADDRESS),
            (3, ErrorKind.MALFORMED_ROW),
            (4, ErrorKind.INVALID_AMOUNT),
        ]

    def test_one_error_per_row(self) -> None:
        _, errors = validate_rows([RawRow(1, 1, "nope", "also nope")], 18)
        assert len(errors) == 1
        assert errors[0].kind == ErrorKind.INVALID_ADDRESS


class TestBuildBatchNative:
    def test_one_transaction_per_row_in_order(self, recipients_csv: str) -> None:
        result = build_batch(recipients_csv)
        assert result.success
        assert result.failure is None
        txs = result.document.transactions
        assert [tx.to for tx in txs] == [ALICE, BOB, CAROL]
        assert all(isinstance(tx, NativeTransfer) for tx in txs)
        assert [tx.value for tx in txs] == [
            1_500_000_000_000_000_000, 0, 250 * 10 ** 18,
        ]

    def test_zero_amount_row(self) -> None:
        result = build_batch(f"{ALICE},0\n")
        assert result.document.to_dict()["transactions"][0]["value"] == "0"

    def test_lowercase_input_is_checksummed(self) -> None:
        result = build_batch(f"{ALICE.lower()},1\n")
        assert result.document.transactions[0].to == ALICE

    def test_summary_totals(self, recipients_csv: str) -> None:
        result = build_batch(recipients_csv)
        assert result.total_amount == 251_500_000_000_000_000_000
        summary = result.summary()
        assert "SUCCESS" in summary
        assert "Recipients: 3" in summary
        assert "Total amount: 251.5 IMX" in summary

    def test_native_build_never_resolves(self, recipients_csv: str) -> None:
        resolver = MagicMock()
        build_batch(recipients_csv, token_address="", resolver=resolver)
        resolver.resolve.assert_not_called()

    def test_idempotent(self, recipients_csv: str) -> None:
        first = build_batch(recipients_csv).document.to_json()
        second = build_batch(recipients_csv).document.to_json()
        assert first == second


class TestBuildBatchToken:
    def test_contract_call_shape(self, recipients_csv: str, usdc_resolver: StaticTokenResolver) -> None:
        result = build_batch(recipients_csv, token_address=TOKEN, resolver=usdc_resolver)
        assert result.success
        assert result.token == USDC
        entries = result.document.to_dict()["transactions"]
        assert len(entries) == 3
        for entry in entries:
            assert entry["to"] == TOKEN
            assert entry["value"] == "0"
            assert entry["contractMethod"]["name"] == "transfer"
            assert [i["name"] for i in entry["contractMethod"]["inputs"]] == ["to", "amount"]
        assert [e["contractInputsValues"]["amount"] for e in entries] == [
            "1500000", "0", "250000000",
        ]

    def test_resolves_exactly_once(self, recipients_csv: str) -> None:
        resolver = MagicMock()
        resolver.resolve.return_value = USDC
        build_batch(recipients_csv, token_address=TOKEN.lower(), resolver=resolver)
        resolver.resolve.assert_called_once_with(TOKEN)

    def test_excess_precision_for_token_decimals(self, usdc_resolver: StaticTokenResolver) -> None:
        result = build_batch(f"{ALICE},1.23456789\n", token_address=TOKEN, resolver=usdc_resolver)
        assert not result.success
        assert result.failure == FailureKind.VALIDATION
        assert result.errors[0].kind == ErrorKind.INVALID_AMOUNT

    def test_resolution_failure_short_circuits(self) -> None:
        result = build_batch(
            "not,even,csv\n0xbad,1\n",
            token_address=TOKEN,
            resolver=StaticTokenResolver({}),
        )
        assert not result.success
        assert result.failure == FailureKind.TOKEN_RESOLUTION
        assert result.errors == []
        assert result.document is None

    def test_invalid_token_address(self, recipients_csv: str) -> None:
        resolver = MagicMock()
        result = build_batch(recipients_csv, token_address="0x1234", resolver=resolver)
        assert result.failure == FailureKind.TOKEN_RESOLUTION
        assert "Invalid token contract address" in result.message
        resolver.resolve.assert_not_called()


class TestBuildBatchFailures:
    def test_aggregate_errors(self) -> None:
        text = f"0xnothex,1\n{BOB},2\n{ALICE[:-2]},3\n"
        result = build_batch(text)
        assert not result.success
        assert result.failure == FailureKind.VALIDATION
        assert result.document is None
        assert [e.row_index for e in result.errors] == [1, 3]
        assert all(e.kind == ErrorKind.INVALID_ADDRESS for e in result.errors)

    def test_unreadable_row_fails_validation(self) -> None:
        result = build_batch(f"{ALICE},1\n{'0x' + 'a' * 200000},1\n")
        assert not result.success
        assert result.failure == FailureKind.VALIDATION
        assert [(e.row_index, e.kind) for e in result.errors] == [(2, ErrorKind.MALFORMED_ROW)]

    def test_summary_lists_errors(self) -> None:
        result = build_batch(f"{ALICE},1\n{BOB},-1\n")
        summary = result.summary()
        assert "FAILED" in summary
        assert "Row 2 (line 2): Invalid amount: '-1'" in summary

    def test_no_rows_builds_empty_batch(self) -> None:
        result = build_batch("address,amount\n\n")
        assert result.success
        assert result.errors == []
        assert result.document.to_dict()["transactions"] == []

    def test_amount_beyond_uint256_fails_validation(self) -> None:
        result = build_batch(f"{ALICE},{'9' * 4300}\n")
        assert not result.success
        assert result.failure == FailureKind.VALIDATION
        assert result.errors[0].kind == ErrorKind.INVALID_AMOUNT
        assert result.document is None


class TestAsyncBuildBatch:
    def test_closes_resolver_it_created(self, recipients_csv: str) -> None:
        resolver = MagicMock()
        resolver.resolve = AsyncMock(return_value=USDC)
        resolver.close = AsyncMock()
        with patch("safe_batch.batch.AsyncWeb3TokenResolver", return_value=resolver):
            result = asyncio.run(async_build_batch(recipients_csv, token_address=TOKEN))
        assert result.success
        resolver.close.assert_awaited_once()

    def test_closes_resolver_it_created_on_failure(self, recipients_csv: str) -> None:
        resolver = MagicMock()
        resolver.resolve = AsyncMock(side_effect=TokenResolutionError(TOKEN, "down"))
        resolver.close = AsyncMock()
        with patch("safe_batch.batch.AsyncWeb3TokenResolver", return_value=resolver):
            result = asyncio.run(async_build_batch(recipients_csv, token_address=TOKEN))
        assert result.failure == FailureKind.TOKEN_RESOLUTION
        resolver.close.assert_awaited_once()

    def test_leaves_caller_resolver_open(self, recipients_csv: str) -> None:
        resolver = _AsyncStaticResolver(USDC)
        resolver.close = AsyncMock()
        asyncio.run(async_build_batch(recipients_csv, token_address=TOKEN, resolver=resolver))
        resolver.close.assert_not_awaited()

    def test_token_build(self, recipients_csv: str) -> None:
        resolver = _AsyncStaticResolver(USDC)
        result = asyncio.run(
            async_build_batch(recipients_csv, token_address=TOKEN, resolver=resolver)
        )
        assert result.success
        assert resolver.calls == 1
        assert all(isinstance(tx, TokenTransfer) for tx in result.document.transactions)

    def test_matches_sync_build(self, recipients_csv: str, usdc_resolver: StaticTokenResolver) -> None:
        sync_result = build_batch(recipients_csv, token_address=TOKEN, resolver=usdc_resolver)
        async_result = asyncio.run(
            async_build_batch(recipients_csv, token_address=TOKEN, resolver=_AsyncStaticResolver(USDC))
        )
        assert async_result.document.to_json() == sync_result.document.to_json()

    def test_resolution_failure(self, recipients_csv: str) -> None:
        result = asyncio.run(
            async_build_batch(recipients_csv, token_address=TOKEN, resolver=_AsyncStaticResolver())
        )
        assert result.failure == FailureKind.TOKEN_RESOLUTION
        assert "rpc unavailable" in result.message

    def test_native_build(self, recipients_csv: str) -> None:
        result = asyncio.run(async_build_batch(recipients_csv))
        assert result.success
        assert isinstance(result.document, BatchDocument)


class TestBuildBatchFromFile:
    def test_reads_file_with_bom(self, tmp_path) -> None:
        path = tmp_path / "recipients.csv"
        path.write_text(f"address,amount\n{ALICE},1\n", encoding="utf-8-sig")
        result = build_batch_from_file(path)
        assert result.success
        assert result.recipient_count == 1
