#!/usr/bin/env python3
"""
FlightWatch Runner Script
Provides easy ways to run different parts of the system
"""
import argparse
import asyncio
import sys

from flightwatch.config import config


def run_web_server():
    """Run the web server with the monitoring driver attached"""
    print("Starting FlightWatch Web Server...")
    print(f"Server will be available at: http://{config.app.host}:{config.app.port}")

    import uvicorn
    uvicorn.run(
        "flightwatch.web.app:app",
        host=config.app.host,
        port=config.app.port,
        reload=config.app.debug,
        log_level="info"
    )


def run_simulation(seed=None, flights=6, hours=30):
    """Run a virtual-clock day simulation"""
    print("🎯 Running Day Simulation...")
    from flightwatch.simulation.day_simulator import DaySimulator

    simulator = DaySimulator(seed=seed, flight_count=flights, hours=hours)

    async def report(event):
        if event["type"] == "disruption":
            print(f"  {event['sim_time']}  {event['kind']:<13} {event['flight_id']}")

    result = asyncio.run(simulator.simulate_day(callback=report))
    print(f"✅ {result['ticks']} ticks, {result['polls']} polls, {result['messages_sent']} messages sent")
    print(f"📊 Phases: {result['phases']}")
    return True


def run_manual_check():
    """Run one forced poll of active flights against the configured database"""
    print("🔍 Running Manual Check...")
    from flightwatch.bootstrap import build_scheduler

    scheduler = build_scheduler()
    summary = asyncio.run(scheduler.check_now())
    print(f"Polled: {summary['polled']}  Skipped: {summary['skipped']}  Errors: {summary['error']}")
    return summary["error"] == 0


def validate_config():
    """Validate configuration"""
    print("🔧 Validating Configuration...")

    if config.validate():
        print("✅ Configuration is valid")
        print(f"📊 FlightAware API Key: {'Set' if config.flightaware.api_key else 'Not Set'}")
        print(f"💬 Telegram Bot Token: {'Set' if config.telegram.bot_token else 'Not Set'}")
        print(f"⏱️  Poll interval: {config.monitoring.interval_minutes} minutes")
        return True
    else:
        print("❌ Configuration validation failed")
        print("⚠️  Check your environment variables and .env file")
        return False


def main():
    parser = argparse.ArgumentParser(
        description="FlightWatch Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "command",
        choices=["server", "simulate", "check", "validate"],
        help="Command to run"
    )
    parser.add_argument("--seed", type=int, default=None, help="Simulation random seed")
    parser.add_argument("--flights", type=int, default=6, help="Number of simulated flights")
    parser.add_argument("--hours", type=int, default=30, help="Simulated hours")

    args = parser.parse_args()

    print("FlightWatch - Flight Monitoring and Notification Service")
    print("=" * 60)

    try:
        if args.command == "server":
            run_web_server()
        elif args.command == "simulate":
            success = run_simulation(args.seed, args.flights, args.hours)
            sys.exit(0 if success else 1)
        elif args.command == "check":
            success = run_manual_check()
            sys.exit(0 if success else 1)
        elif args.command == "validate":
            success = validate_config()
            sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        print("\n👋 Goodbye!")


if __name__ == "__main__":
    main()
