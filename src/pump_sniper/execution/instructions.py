from typing import List, Sequence
import struct
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.hash import Hash
from solders.instruction import Instruction, AccountMeta
from solders.message import MessageV0
from solders.transaction import VersionedTransaction
from solders.system_program import transfer, TransferParams
from spl.token.instructions import get_associated_token_address
from .constants import (
    PUMP_PROGRAM, PUMP_GLOBAL, PUMP_FEE, PUMP_EVENT_AUTHORITY, SYSTEM_PROGRAM,
    SYSTEM_TOKEN_PROGRAM, SYSTEM_RENT, ASSOCIATED_TOKEN_PROGRAM_ID, COMPUTE_BUDGET_ID,
    BUY_DISCRIMINATOR, SELL_DISCRIMINATOR, BONDING_CURVE_SEED
)


class TransactionBuildError(Exception):
    """Raised when instructions or the transaction cannot be assembled"""
    pass


def get_bonding_curve_pda(mint: Pubkey, program_id: Pubkey = PUMP_PROGRAM) -> Pubkey:
    """Derive the bonding curve PDA for a given mint"""
    pda, _ = Pubkey.find_program_address([BONDING_CURVE_SEED, bytes(mint)], program_id)
    return pda


def get_associated_bonding_curve(mint: Pubkey, bonding_curve: Pubkey) -> Pubkey:
    """Token account holding the curve's token reserve"""
    return get_associated_token_address(bonding_curve, mint)


class Instructions:
    def __init__(self, wallet: Keypair):
        self.wallet = wallet

    def get_user_ata(self, mint: Pubkey) -> Pubkey:
        return get_associated_token_address(self.wallet.pubkey(), mint)

    def create_compute_budget_instructions(
        self,
        compute_unit_limit: int,
        priority_fee: int = 0
    ) -> List[Instruction]:
        """Create compute budget instructions for transaction priority

        Args:
            compute_unit_limit: Compute unit limit
            priority_fee: Priority fee in microlamports, omitted when 0

        Returns:
            List with the limit instruction and, optionally, the price instruction
        """
        # Set Compute Unit Limit (instruction ID: 2)
        instructions = [
            Instruction(
                program_id=COMPUTE_BUDGET_ID,
                data=bytes([2]) + compute_unit_limit.to_bytes(4, "little"),
                accounts=[]
            )
        ]

        # Set Compute Unit Price (instruction ID: 3)
        if priority_fee > 0:
            instructions.append(
                Instruction(
                    program_id=COMPUTE_BUDGET_ID,
                    data=bytes([3]) + priority_fee.to_bytes(8, "little"),
                    accounts=[]
                )
            )
        return instructions

    def create_ata_idempotent_instruction(self, mint: Pubkey) -> Instruction:
        """CreateIdempotent on the associated token program, a no-op if the ATA exists"""
        owner = self.wallet.pubkey()
        accounts = [
            AccountMeta(pubkey=owner, is_signer=True, is_writable=True),
            AccountMeta(pubkey=self.get_user_ata(mint), is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_TOKEN_PROGRAM, is_signer=False, is_writable=False),
        ]
        return Instruction(ASSOCIATED_TOKEN_PROGRAM_ID, bytes([1]), accounts)

    def create_buy_instruction(
        self,
        mint: Pubkey,
        bonding_curve: Pubkey,
        associated_bonding_curve: Pubkey,
        user_ata: Pubkey,
        token_amount: int,
        max_sol_amount: int
    ) -> Instruction:
        """Create the buy instruction with minimum token amount and max SOL"""
        accounts = [
            AccountMeta(pubkey=PUMP_GLOBAL, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_FEE, is_signer=False, is_writable=True),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=bonding_curve, is_signer=False, is_writable=True),
            AccountMeta(pubkey=associated_bonding_curve, is_signer=False, is_writable=True),
            AccountMeta(pubkey=user_ata, is_signer=False, is_writable=True),
            AccountMeta(pubkey=self.wallet.pubkey(), is_signer=True, is_writable=True),
            AccountMeta(pubkey=SYSTEM_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_TOKEN_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_RENT, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_EVENT_AUTHORITY, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_PROGRAM, is_signer=False, is_writable=False),
        ]

        discriminator = struct.pack("<Q", BUY_DISCRIMINATOR)
        data = discriminator + struct.pack("<Q", token_amount) + struct.pack("<Q", max_sol_amount)

        return Instruction(PUMP_PROGRAM, data, accounts)

    def create_sell_instruction(
        self,
        mint: Pubkey,
        bonding_curve: Pubkey,
        associated_bonding_curve: Pubkey,
        user_ata: Pubkey,
        token_amount: int,
        min_sol_output: int
    ) -> Instruction:
        """Create the sell instruction according to the Pump IDL"""
        accounts = [
            AccountMeta(pubkey=PUMP_GLOBAL, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_FEE, is_signer=False, is_writable=True),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=bonding_curve, is_signer=False, is_writable=True),
            AccountMeta(pubkey=associated_bonding_curve, is_signer=False, is_writable=True),
            AccountMeta(pubkey=user_ata, is_signer=False, is_writable=True),
            AccountMeta(pubkey=self.wallet.pubkey(), is_signer=True, is_writable=True),
            AccountMeta(pubkey=SYSTEM_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_TOKEN_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_EVENT_AUTHORITY, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_PROGRAM, is_signer=False, is_writable=False),
        ]

        data = SELL_DISCRIMINATOR + struct.pack("<Q", token_amount) + struct.pack("<Q", min_sol_output)
        return Instruction(PUMP_PROGRAM, data, accounts)

    def create_tip_instruction(self, tip_account: Pubkey, lamports: int) -> Instruction:
        """SOL transfer to a Jito tip account"""
        return transfer(
            TransferParams(
                from_pubkey=self.wallet.pubkey(),
                to_pubkey=tip_account,
                lamports=lamports
            )
        )

    def build_transaction(self, instructions: Sequence[Instruction], blockhash: Hash) -> VersionedTransaction:
        """Compile a v0 message for the wallet and sign it"""
        try:
            message = MessageV0.try_compile(
                payer=self.wallet.pubkey(),
                instructions=list(instructions),
                address_lookup_table_accounts=[],
                recent_blockhash=blockhash,
            )
            return VersionedTransaction(message, [self.wallet])
        except Exception as e:
            raise TransactionBuildError(f"Failed to build transaction: {str(e)}") from e
