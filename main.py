"""
Aerodrome Slipstream Rebalancer CLI

Одна CL позиция, застейканная в gauge:
- status / plan - текущие резервы, цена и предлагаемый своп
- rebalance - закрыть позицию, выровнять резервы, открыть новую
- close / withdraw / withdraw-rewards / close-and-withdraw - вывод средств
- swap / rescue / deposit - ручные операции

Настройки - в .env (см. config.load_settings).
"""

import argparse
import logging
import sys
from decimal import Decimal, InvalidOperation

from config import DEFAULT_SLIPPAGE, FIXED_ONE, get_token, load_settings
from rebalancer import Rebalancer, RebalancerError
from rebalancer.math.ticks import align_tick_to_spacing, human_price_to_tick, sqrt_price_x96_to_price

logger = logging.getLogger("rebalancer")

MUTATING_COMMANDS = {
    "rebalance", "close", "withdraw", "withdraw-rewards",
    "close-and-withdraw", "swap", "rescue", "deposit",
}


def setup_logging(verbose: bool = False):
    """Лог в консоль и в rebalancer.log."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[
            logging.FileHandler("rebalancer.log", encoding="utf-8"),
            logging.StreamHandler()
        ],
        force=True
    )


def parse_fixed(value: str) -> int:
    """'1.5' -> 1.5 * 10^18."""
    try:
        parsed = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Not a number: {value}")
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"Must not be negative: {value}")
    return int(parsed * FIXED_ONE)


def parse_amount(value: str) -> int:
    """Количество в минимальных единицах токена."""
    try:
        amount = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Amount must be an integer in base units: {value}")
    if amount < 0:
        raise argparse.ArgumentTypeError(f"Amount must not be negative: {value}")
    return amount


def resolve_token(value: str) -> str:
    """Адрес или символ токена Base (WETH, USDC, AERO, ...)."""
    if value.startswith("0x"):
        return value
    return get_token(value).address


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Aerodrome Slipstream single-position rebalancer")
    parser.add_argument("-v", "--verbose", action="store_true", help="DEBUG logging")
    parser.add_argument("--env-file", default=None, help="Path to .env (default: ./.env)")
    parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Pair, reserves, price and position")

    plan = sub.add_parser("plan", help="Preview the swap a rebalance would make")
    plan.add_argument("--ratio", type=parse_fixed, required=True, help="Target token0 per token1, e.g. 1.0")
    plan.add_argument("--slippage", type=parse_fixed, default=DEFAULT_SLIPPAGE,
                      help="Slippage as a fraction, e.g. 0.01 (default 1%%)")

    rebalance = sub.add_parser("rebalance", help="Close, swap to ratio, open and stake a new position")
    rebalance.add_argument("--tick-lower", type=int)
    rebalance.add_argument("--tick-upper", type=int)
    rebalance.add_argument("--price-lower", type=float, help="Human price token1 per token0")
    rebalance.add_argument("--price-upper", type=float, help="Human price token1 per token0")
    rebalance.add_argument("--ratio", type=parse_fixed, required=True, help="Target token0 per token1")
    rebalance.add_argument("--slippage", type=parse_fixed, default=DEFAULT_SLIPPAGE)

    sub.add_parser("close", help="Unstake, drain and burn the current position")
    sub.add_parser("withdraw", help="Send both reserves to OWNER_ADDRESS (or the operator)")
    sub.add_parser("withdraw-rewards", help="Send reward tokens to OWNER_ADDRESS (or the operator)")
    sub.add_parser("close-and-withdraw", help="close + withdraw + withdraw-rewards")

    swap = sub.add_parser("swap", help="Explicit swap inside the pair")
    swap.add_argument("token_in", type=resolve_token)
    swap.add_argument("amount_in", type=parse_amount)
    swap.add_argument("--min-out", type=parse_amount, required=True,
                      help="Minimum acceptable output, raw units")

    rescue = sub.add_parser("rescue", help="Transfer any token out")
    rescue.add_argument("token", type=resolve_token)
    rescue.add_argument("amount", type=parse_amount)
    rescue.add_argument("to")

    deposit = sub.add_parser("deposit", help="Pull a reserve token from a source wallet (needs allowance)")
    deposit.add_argument("token", type=resolve_token)
    deposit.add_argument("amount", type=parse_amount)
    deposit.add_argument("--source", required=True)

    return parser


def resolve_ticks(args, rebalancer: Rebalancer) -> tuple:
    """Тики из аргументов: напрямую или из цен с выравниванием к spacing."""
    if args.tick_lower is not None and args.tick_upper is not None:
        return args.tick_lower, args.tick_upper

    if args.price_lower is None or args.price_upper is None:
        raise SystemExit("Specify --tick-lower/--tick-upper or --price-lower/--price-upper")

    ctx = rebalancer.lifecycle.load_context()
    tick_a = human_price_to_tick(args.price_lower, ctx.decimals0, ctx.decimals1)
    tick_b = human_price_to_tick(args.price_upper, ctx.decimals0, ctx.decimals1)
    tick_lower = align_tick_to_spacing(min(tick_a, tick_b), ctx.tick_spacing, round_down=True)
    tick_upper = align_tick_to_spacing(max(tick_a, tick_b), ctx.tick_spacing, round_down=False)
    logger.info(f"Prices {args.price_lower}-{args.price_upper} -> ticks [{tick_lower}, {tick_upper}]")
    return tick_lower, tick_upper


def print_status(status: dict):
    print("\n" + "=" * 60)
    print("REBALANCER STATUS")
    print("=" * 60)
    print(f"  token0:        {status['token0']} ({status['decimals0']} dec)")
    print(f"  token1:        {status['token1']} ({status['decimals1']} dec)")
    print(f"  pool:          {status['pool']} (tick spacing {status['tick_spacing']})")
    print(f"  balance0:      {status['balance0']}")
    print(f"  balance1:      {status['balance1']}")
    if status['ratio'] is not None:
        print(f"  ratio:         {Decimal(status['ratio']) / FIXED_ONE} token0 per token1")
    if status['sqrt_price_x96']:
        price = sqrt_price_x96_to_price(status['sqrt_price_x96'], status['decimals0'], status['decimals1'])
        print(f"  price:         {price:.8f} token1 per token0")
    print(f"  position:      {status['position_id'] or '-'} ({status['state']})")
    if status['earned'] is not None:
        print(f"  earned:        {status['earned']}")
    print("=" * 60)


def confirm(command: str) -> bool:
    answer = input(f"\nRun '{command}'? (yes/no): ")
    return answer.strip().lower() == "yes"


def run(args) -> int:
    settings = load_settings(args.env_file)
    logger.debug(f"Settings: {settings!r}")
    rebalancer = Rebalancer.from_settings(settings)

    if args.command == "status":
        print_status(rebalancer.status())
        return 0

    if args.command == "plan":
        plan = rebalancer.preview_swap_plan(args.ratio, args.slippage)
        if not plan.should_swap:
            print("No swap needed")
        else:
            side = "buy token0" if plan.is_buy else "buy token1"
            print(f"Swap ({side}): {plan.amount_in} of {plan.token_in} -> min {plan.amount_out_min} of {plan.token_out}")
        return 0

    if args.command in MUTATING_COMMANDS and not args.yes and not confirm(args.command):
        print("Cancelled")
        return 1

    # транзакции подписывает ключ из PRIVATE_KEY, он и есть вызывающий
    operator = rebalancer.operator

    if args.command == "rebalance":
        tick_lower, tick_upper = resolve_ticks(args, rebalancer)
        result = rebalancer.rebalance(tick_lower, tick_upper, args.ratio, args.slippage, caller=operator)
        if result.token_id:
            staked = "staked" if result.staked else "NOT staked"
            print(f"\nPosition {result.token_id} opened ({staked}), liquidity {result.liquidity}")
            print(f"Used: {result.amount0} token0, {result.amount1} token1")
        else:
            print(f"\nNo position opened: {result.reason}")
    elif args.command == "close":
        result = rebalancer.close_all_positions(caller=operator)
        print(f"Closed position {result.token_id}" if result.closed else "No open position")
    elif args.command == "withdraw":
        amount0, amount1 = rebalancer.withdraw_all(caller=operator)
        print(f"Withdrew {amount0} token0, {amount1} token1")
    elif args.command == "withdraw-rewards":
        print(f"Withdrew {rebalancer.withdraw_rewards(caller=operator)} reward tokens")
    elif args.command == "close-and-withdraw":
        result = rebalancer.close_and_withdraw(caller=operator)
        print(f"Withdrew {result['amount0']} token0, {result['amount1']} token1, {result['rewards']} rewards")
    elif args.command == "swap":
        result = rebalancer.execute_swap(args.token_in, args.amount_in, args.min_out, caller=operator)
        print(f"Swapped {result.amount_in} -> {result.amount_out} (tx {result.tx_hash})")
    elif args.command == "rescue":
        print(f"TX: {rebalancer.rescue_token(args.token, args.amount, args.to, caller=operator)}")
    elif args.command == "deposit":
        print(f"TX: {rebalancer.deposit(args.token, args.amount, args.source, caller=operator)}")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        return run(args)
    except RebalancerError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
