"""
Configuration validation for Tripsheet Billing
Ensures the environment variables the app factory reads are properly set
"""
import os
import logging
from typing import Dict, List, Tuple, Any

logger = logging.getLogger(__name__)

class ConfigValidationError(Exception):
    """Raised when critical configuration is missing or invalid"""
    pass

def validate_flask_config() -> Tuple[bool, List[str]]:
    """
    Validate Flask configuration for production.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []

    session_secret = os.getenv('SESSION_SECRET')
    if not session_secret:
        issues.append("Missing SESSION_SECRET environment variable")
    elif len(session_secret) < 32:
        issues.append("SESSION_SECRET should be at least 32 characters for security")

    debug_mode = os.getenv('DEBUG', 'False').lower()
    if debug_mode in ('true', '1', 'yes'):
        issues.append("DEBUG mode is enabled - should be disabled in production")

    return len(issues) == 0, issues

def validate_database_config() -> Tuple[bool, List[str]]:
    """
    Validate the DATABASE_URL setting.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []
    database_url = os.getenv('DATABASE_URL', '')

    if not database_url:
        issues.append("DATABASE_URL not set - falling back to local SQLite file")
    elif not database_url.startswith(('postgresql://', 'postgres://', 'postgresql+psycopg2://', 'sqlite://')):
        issues.append("DATABASE_URL must be a PostgreSQL or SQLite URL")
    elif database_url.startswith('sqlite://'):
        issues.append("SQLite database in use - configure PostgreSQL for production")

    return len(issues) == 0, issues

def check_production_readiness() -> Dict[str, Any]:
    """
    Check of production readiness.

    Returns:
        dict: Status information including issues and recommendations
    """
    debug_mode = os.getenv('DEBUG', 'False').lower() in ('true', '1', 'yes')

    flask_valid, flask_issues = validate_flask_config()
    database_valid, database_issues = validate_database_config()

    all_issues = flask_issues + database_issues
    is_production_ready = bool(len(all_issues) == 0 and not debug_mode)

    result = {
        'production_ready': is_production_ready,
        'debug_mode': debug_mode,
        'database_configured': database_valid,
        'issues': all_issues,
        'recommendations': []
    }

    if debug_mode:
        result['recommendations'].append("Disable DEBUG mode for production deployment")

    if not database_valid:
        result['recommendations'].append("Configure a PostgreSQL DATABASE_URL")

    if is_production_ready:
        logger.info("CONFIG: Production readiness check PASSED")
    else:
        logger.warning(f"CONFIG: Production readiness check FAILED - Issues: {len(all_issues)}")
        for issue in all_issues:
            logger.warning(f"CONFIG: Issue - {issue}")

    return result

def require_valid_config() -> None:
    """Raise ConfigValidationError when the Flask configuration is unusable."""
    _, flask_issues = validate_flask_config()
    if not os.getenv('SESSION_SECRET'):
        raise ConfigValidationError("; ".join(flask_issues))

def get_config_status() -> str:
    status = check_production_readiness()

    if status['production_ready']:
        return "production-ready"
    elif status['debug_mode']:
        return "DEBUG mode (development only)"
    else:
        return f"{len(status['issues'])} configuration issues"
