"""
Telegram interface for the Pump Trader.

Paste a token address to get a risk check plus AI analysis with buy buttons.
Bought positions are handed to the PositionMonitor, which reports every
automatic exit back to the chat that opened the position.
"""

import html
import logging
import re
import time
from typing import Callable, Dict, List, Optional, Set

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.ext import (
    Application, CallbackQueryHandler, CommandHandler,
    ContextTypes, MessageHandler, filters
)

from .ai_analysis import MAX_KEY_POINTS, TokenAnalysis
from .position_monitor import ExitReason, ExitResult, PositionNotFoundError
from .risk_limits import RiskLimitError
from .token_validator import TokenMetadata, TokenValidation

logger = logging.getLogger(__name__)

SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
SOLSCAN_TX = "https://solscan.io/tx/{}"
SOLSCAN_ACCOUNT = "https://solscan.io/account/{}"

UNAUTHORIZED_TEXT = "🚫 Unauthorized. Contact admin."


def is_token_address(text: str) -> bool:
    return bool(SOLANA_ADDRESS_RE.match((text or "").strip()))


def _fmt_amount(amount: float) -> str:
    return f"{amount:g}"


class TraderUI:
    """
    Telegram command surface.

    Commands:
    - /start, /help - usage and current exit settings
    - /wallet - trading wallet address and SOL balance
    - /positions - open positions and failed automatic exits
    - /buy <mint> [amount] - buy without analysis
    - /sell <mint> - manual exit
    - plain token address - analyze with buy buttons
    """

    def __init__(
        self,
        config,
        executor,
        validator,
        analyzer,
        monitor,
        price_feed,
        trade_limits=None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.executor = executor
        self.validator = validator
        self.analyzer = analyzer
        self.monitor = monitor
        self.price_feed = price_feed
        self.trade_limits = trade_limits
        self._clock = clock

        self.app: Optional[Application] = None
        self._position_chats: Dict[str, int] = {}  # token_mint -> chat_id
        self._pending_buys: Set[str] = set()

        self.monitor.register_exit_handler(self.notify_exit)

    def is_authorized(self, user_id: int) -> bool:
        return self.config.is_authorized(user_id)

    async def start(self):
        """Start polling Telegram."""
        self.app = Application.builder().token(self.config.telegram_bot_token).build()

        self.app.add_handler(CommandHandler("start", self._cmd_start))
        self.app.add_handler(CommandHandler("help", self._cmd_help))
        self.app.add_handler(CommandHandler("wallet", self._cmd_wallet))
        self.app.add_handler(CommandHandler("positions", self._cmd_positions))
        self.app.add_handler(CommandHandler("buy", self._cmd_buy))
        self.app.add_handler(CommandHandler("sell", self._cmd_sell))
        self.app.add_handler(CallbackQueryHandler(self._handle_callback, pattern=r"^buy:"))
        self.app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_message))
        self.app.add_error_handler(self._on_error)

        await self.app.initialize()
        await self.app.start()
        await self.app.updater.start_polling(drop_pending_updates=True)

        logger.info("Telegram UI started")

    async def stop(self):
        """Stop polling and shut the application down."""
        if self.app:
            if self.app.updater and self.app.updater.running:
                await self.app.updater.stop()
            if self.app.running:
                await self.app.stop()
            await self.app.shutdown()
            logger.info("Telegram UI stopped")

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE):
        logger.error(f"Telegram handler error: {context.error}", exc_info=context.error)

    # ============ Message Builders ============

    def build_welcome(self) -> str:
        return (
            "🤖 <b>Pump Trader</b>\n\n"
            "AI-assisted Pump.fun trading with automatic exits.\n\n"
            "<b>Commands:</b>\n"
            "/buy &lt;token_address&gt; [amount] - Buy without analysis\n"
            "/positions - View active positions\n"
            "/sell &lt;token_address&gt; - Manually sell a position\n"
            "/wallet - Show wallet address and balance\n"
            "/help - Show this help message\n\n"
            "<b>Quick Start:</b>\n"
            "Send any Pump.fun token contract address to get instant analysis.\n\n"
            "⚠️ <i>Trading crypto is risky. Only invest what you can afford to lose.</i>"
        )

    def build_help(self) -> str:
        amounts = ", ".join(f"{_fmt_amount(a)} SOL" for a in self.config.default_buy_amounts)
        return (
            "📖 <b>How to Use Pump Trader</b>\n\n"
            "<b>Analyze &amp; Buy:</b>\n"
            "Send a Solana token address and the bot will:\n"
            "1. ✅ Validate the token (liquidity, risk, holders)\n"
            "2. 🤖 Run an AI analysis with a recommendation\n"
            f"3. 💰 Offer buy buttons ({amounts})\n\n"
            "<b>Commands:</b>\n"
            "• <code>/buy &lt;address&gt; &lt;amount&gt;</code> - Buy without analysis\n"
            "• <code>/positions</code> - See open positions\n"
            "• <code>/sell &lt;address&gt;</code> - Manually exit a position\n"
            "• <code>/wallet</code> - Check the wallet\n\n"
            "<b>Auto-Sell Conditions:</b>\n"
            f"• 🎯 Take Profit: {self.config.take_profit_percent:g}%\n"
            f"• 🛑 Stop Loss: {self.config.stop_loss_percent:g}%\n"
            f"• ⏰ Max Hold: {self.config.max_hold_minutes:g} minutes\n\n"
            "<b>Example:</b>\n"
            "<code>3WPtHU8HPDrYcrKiiq2n9XQrK9q9TW3aVteSfes8pump</code>"
        )

    def build_wallet_message(self, address: str, balance: Optional[float]) -> str:
        balance_line = f"{balance:.4f} SOL" if balance is not None else "unavailable"
        return (
            "💼 <b>Wallet Information</b>\n\n"
            f"Address: <code>{address}</code>\n"
            f"Balance: <b>{balance_line}</b>\n\n"
            f"View on Solscan:\n{SOLSCAN_ACCOUNT.format(address)}"
        )

    def build_positions_view(self) -> str:
        positions = self.monitor.get_active_positions()
        failed = self.monitor.get_failed_exits()

        if not positions and not failed:
            return "📊 No active positions."

        now = self._clock()
        lines: List[str] = []

        if positions:
            lines.append("📊 <b>Active Positions:</b>\n")
            for pos in positions:
                minutes = int(pos.held_seconds(now) // 60)
                lines.append(f"<b>{html.escape(pos.token_symbol)}</b>")
                lines.append(f"Entry: ${pos.entry_price:.8f}")
                lines.append(f"Amount: {_fmt_amount(pos.amount_sol)} SOL")
                lines.append(f"Time: {minutes}m")
                lines.append(f"<code>{pos.token_mint}</code>\n")

        if failed:
            lines.append("🚨 <b>Automatic exit failed (sell manually):</b>\n")
            for pos in failed:
                lines.append(f"<b>{html.escape(pos.token_symbol)}</b> after {pos.exit_attempts} attempts")
                lines.append(f"<code>{pos.token_mint}</code>\n")

        return "\n".join(lines).rstrip()

    def build_analysis_message(
        self,
        metadata: TokenMetadata,
        validation: TokenValidation,
        analysis: TokenAnalysis,
    ) -> str:
        message = f"🪙 <b>{html.escape(metadata.name)} ({html.escape(metadata.symbol)})</b>\n\n"
        message += "📊 <b>Market Data:</b>\n"
        message += f"• MC: ${validation.market_cap:,.0f}\n"
        message += f"• Liquidity: ${validation.liquidity:,.0f}\n"
        message += f"• Holders: {validation.holder_count}\n"
        message += f"• Top Holder: {validation.top_holder_percent:.1f}%\n\n"
        message += f"⚠️ <b>Risk Score: {validation.risk_score}/10</b>\n"
        if validation.degraded:
            message += "<i>Validation data unavailable, assuming worst case.</i>\n"
        message += "\n"
        message += f"🤖 <b>AI Analysis:</b>\n{html.escape(analysis.summary)}\n\n"
        message += (
            f"🧭 <b>Recommendation: {analysis.recommendation.value}</b> "
            f"({analysis.confidence}% confidence)\n\n"
        )
        message += "📋 <b>Key Points:</b>\n"
        key_points = analysis.key_points or validation.reasons
        message += "\n".join(html.escape(p) for p in key_points[:MAX_KEY_POINTS])

        if not validation.is_valid:
            message += "\n\n❌ <b>Token did not pass validation. Trading disabled.</b>"
        return message

    def build_buy_keyboard(self, token_mint: str) -> InlineKeyboardMarkup:
        buttons = [
            InlineKeyboardButton(
                f"Buy {_fmt_amount(amount)} SOL",
                callback_data=f"buy:{token_mint}:{_fmt_amount(amount)}",
            )
            for amount in self.config.default_buy_amounts
        ]
        buttons.append(InlineKeyboardButton("Custom", callback_data=f"buy:{token_mint}:custom"))
        rows = [buttons[i:i + 2] for i in range(0, len(buttons), 2)]
        return InlineKeyboardMarkup(rows)

    def build_exit_notification(self, result: ExitResult) -> str:
        symbol = html.escape(result.token_symbol)
        if not result.success:
            return (
                f"🚨 <b>Automatic exit FAILED: {symbol}</b>\n\n"
                f"Trigger: {result.message}\n"
                f"Error: {html.escape(result.error)}\n\n"
                f"Sell manually with:\n<code>/sell {result.token_mint}</code>"
            )
        return (
            f"🚪 <b>Position closed: {symbol}</b>\n\n"
            f"{result.message}\n"
            f"Exit Price: ${result.final_price:.8f}\n\n"
            f"Transaction:\n{SOLSCAN_TX.format(result.signature)}"
        )

    # ============ Trading ============

    def _duplicate_buy_text(self, token_mint: str) -> Optional[str]:
        if token_mint in self._pending_buys:
            return "⏳ A buy for this token is already in progress"
        if self.monitor.has_active_position(token_mint):
            return "⚠️ Already have a position in this token!"
        return None

    async def execute_buy(self, chat_id: int, token_mint: str, amount: float) -> str:
        """
        Buy, register the position, and return the reply text.

        The mint stays claimed from before the first await until the position
        is registered or the buy is abandoned.
        """
        duplicate = self._duplicate_buy_text(token_mint)
        if duplicate:
            return duplicate

        self._pending_buys.add(token_mint)
        try:
            return await self._buy_and_track(chat_id, token_mint, amount)
        finally:
            self._pending_buys.discard(token_mint)

    async def _buy_and_track(self, chat_id: int, token_mint: str, amount: float) -> str:
        if self.trade_limits is not None:
            try:
                self.trade_limits.check_buy(amount)
            except RiskLimitError as e:
                return f"🛑 Buy blocked: {html.escape(str(e))}"

        try:
            signature = await self.executor.buy_token(token_mint, amount)
        except Exception as e:
            return f"❌ Buy failed: {html.escape(str(e))}"

        metadata = await self.validator.get_token_metadata(token_mint)
        entry_price = await self._get_entry_price(token_mint)

        await self.monitor.add_position(token_mint, metadata.symbol, entry_price, amount)
        self._position_chats[token_mint] = chat_id

        return (
            "✅ <b>Buy Successful!</b>\n\n"
            f"Token: {html.escape(metadata.symbol)}\n"
            f"Amount: {_fmt_amount(amount)} SOL\n"
            f"Entry Price: ${entry_price:.8f}\n\n"
            f"Transaction:\n{SOLSCAN_TX.format(signature)}\n\n"
            "🤖 Now monitoring position for auto-sell..."
        )

    async def _get_entry_price(self, token_mint: str) -> float:
        try:
            market = await self.validator.get_market_data(token_mint)
            if market.price > 0:
                return market.price
        except Exception as e:
            logger.warning(f"Market data unavailable for entry price of {token_mint[:8]}...: {e}")
        return await self.price_feed.get_price(token_mint)

    async def notify_exit(self, result: ExitResult):
        """Exit handler: report automatic exits to the opening chat."""
        chat_id = self._position_chats.pop(result.token_mint, None)

        if result.reason == ExitReason.MANUAL and result.success:
            return

        if self.app is None:
            logger.warning(f"Exit for {result.token_symbol} not delivered: Telegram not started")
            return

        if chat_id is not None:
            targets = [chat_id]
        else:
            targets = [int(u) for u in self.config.authorized_users if u.lstrip("-").isdigit()]

        if not targets:
            logger.warning(f"No chat to notify about exit of {result.token_symbol}")
            return

        text = self.build_exit_notification(result)
        for target in targets:
            try:
                await self.app.bot.send_message(
                    chat_id=target,
                    text=text,
                    parse_mode=ParseMode.HTML,
                    disable_web_page_preview=True,
                )
            except Exception as e:
                logger.error(f"Failed to send exit notification to {target}: {e}")

    # ============ Command Handlers ============

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.message.reply_text(self.build_welcome(), parse_mode=ParseMode.HTML)

    async def _cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.message.reply_text(self.build_help(), parse_mode=ParseMode.HTML)

    async def _cmd_wallet(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self.is_authorized(update.effective_user.id):
            await update.message.reply_text(UNAUTHORIZED_TEXT)
            return

        try:
            balance = await self.executor.get_sol_balance()
        except Exception as e:
            logger.warning(f"Balance lookup failed: {e}")
            balance = None

        await update.message.reply_text(
            self.build_wallet_message(self.executor.wallet_address, balance),
            parse_mode=ParseMode.HTML,
            disable_web_page_preview=True,
        )

    async def _cmd_positions(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self.is_authorized(update.effective_user.id):
            await update.message.reply_text(UNAUTHORIZED_TEXT)
            return

        await update.message.reply_text(self.build_positions_view(), parse_mode=ParseMode.HTML)

    async def _cmd_buy(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self.is_authorized(update.effective_user.id):
            await update.message.reply_text(UNAUTHORIZED_TEXT)
            return

        args = context.args or []
        if not args or not is_token_address(args[0]):
            await update.message.reply_text(
                "Usage: <code>/buy &lt;token_address&gt; &lt;amount_sol&gt;</code>",
                parse_mode=ParseMode.HTML,
            )
            return

        token_mint = args[0].strip()
        try:
            amount = float(args[1]) if len(args) > 1 else self.config.default_buy_amounts[0]
        except ValueError:
            await update.message.reply_text(f"❌ Invalid amount: {html.escape(args[1])}")
            return

        await update.message.reply_text(f"🔵 Buying {_fmt_amount(amount)} SOL of this token...")
        reply = await self.execute_buy(update.effective_chat.id, token_mint, amount)
        await update.message.reply_text(
            reply,
            parse_mode=ParseMode.HTML,
            disable_web_page_preview=True,
        )

    async def _cmd_sell(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self.is_authorized(update.effective_user.id):
            await update.message.reply_text(UNAUTHORIZED_TEXT)
            return

        args = context.args or []
        if not args or not is_token_address(args[0]):
            await update.message.reply_text(
                "Usage: <code>/sell &lt;token_address&gt;</code>",
                parse_mode=ParseMode.HTML,
            )
            return

        token_mint = args[0].strip()
        try:
            signature = await self.monitor.manual_exit(token_mint)
        except PositionNotFoundError:
            await update.message.reply_text("⚠️ No active position for this token.")
            return
        except Exception as e:
            logger.error(f"Manual sell failed for {token_mint[:8]}...: {e}")
            await update.message.reply_text(f"❌ Sell failed: {html.escape(str(e))}")
            return

        await update.message.reply_text(
            f"✅ <b>Position sold</b>\n\nTransaction:\n{SOLSCAN_TX.format(signature)}",
            parse_mode=ParseMode.HTML,
            disable_web_page_preview=True,
        )

    async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Analyze a pasted token address."""
        text = (update.message.text or "").strip()
        if not is_token_address(text):
            return

        if not self.is_authorized(update.effective_user.id):
            await update.message.reply_text(UNAUTHORIZED_TEXT)
            return

        token_mint = text
        status_msg = await update.message.reply_text("🔍 Analyzing token...")

        try:
            validation = await self.validator.validate_token(token_mint)
            metadata = await self.validator.get_token_metadata(token_mint)
            analysis = await self.analyzer.analyze_token(token_mint, metadata, validation)
        except Exception as e:
            logger.error(f"Analysis failed for {token_mint[:8]}...: {e}")
            await status_msg.edit_text(f"❌ Analysis failed: {html.escape(str(e))}")
            return

        message = self.build_analysis_message(metadata, validation, analysis)
        keyboard = self.build_buy_keyboard(token_mint) if validation.is_valid else None
        await status_msg.edit_text(message, parse_mode=ParseMode.HTML, reply_markup=keyboard)

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle buy button presses: buy:<mint>:<amount|custom>."""
        query = update.callback_query

        if not self.is_authorized(query.from_user.id):
            await query.answer("🚫 Unauthorized")
            return

        parts = (query.data or "").split(":")
        if len(parts) != 3 or parts[0] != "buy":
            await query.answer()
            return

        _, token_mint, amount_str = parts

        if amount_str == "custom":
            await query.answer("Use /buy <address> <amount> for a custom amount")
            return

        try:
            amount = float(amount_str)
        except ValueError:
            await query.answer("Invalid amount")
            return

        duplicate = self._duplicate_buy_text(token_mint)
        if duplicate:
            await query.answer(duplicate)
            return

        await query.answer(f"Buying {_fmt_amount(amount)} SOL worth...")

        chat_id = update.effective_chat.id
        await context.bot.send_message(
            chat_id=chat_id,
            text=f"🔵 Buying {_fmt_amount(amount)} SOL of this token...",
        )
        reply = await self.execute_buy(chat_id, token_mint, amount)
        await context.bot.send_message(
            chat_id=chat_id,
            text=reply,
            parse_mode=ParseMode.HTML,
            disable_web_page_preview=True,
        )
