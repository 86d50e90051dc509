# Agents package
from agents.demand_agent import DemandAnalyzer
from agents.pricing_agent import PriceCalculator
from agents.monitor_agent import MonitorAgent
from agents.report_agent import ReportAgent
from agents.yield_jobs import YieldJobs
from agents.scheduler_agent import YieldScheduler

__all__ = [
    'DemandAnalyzer',
    'PriceCalculator',
    'MonitorAgent',
    'ReportAgent',
    'YieldJobs',
    'YieldScheduler',
]
