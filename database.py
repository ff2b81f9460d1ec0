"""
database.py
SQLite persistence for the rental ledger

Provides:
- Connection management
- Schema creation and indexes
- Database initialization / table refresh from CSV
- CSV export and backups (restorable with init_database)
- SqliteRepository (Repository implementation)
"""

import sqlite3
import pandas as pd
from pathlib import Path
from datetime import datetime
from typing import Optional, List, Dict, Any
import logging

from config import DB_PATH, DEFAULT_CURRENCY_RATES
from exceptions import NotFoundError
from models import (Apartment, Booking, CurrencyRate, Expense, FundTransaction,
                    Partner, PartnerShare)
from repository import Repository, Snapshot
import loaders

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Table definitions: columns, CSV sources and legacy column aliases
TABLE_DEFINITIONS = {
    'bookings': {
        'csv': 'bookings.csv',
        'description': 'Guest stays with their settlement fields',
        'key_columns': ['id'],
        'aliases': loaders.BOOKING_ALIASES,
        'columns': {
            'id': 'TEXT PRIMARY KEY', 'apartment_id': 'TEXT', 'room_id': 'TEXT',
            'booking_code': 'TEXT', 'guest_name': 'TEXT', 'check_in': 'TEXT', 'check_out': 'TEXT',
            'number_of_nights': 'INTEGER', 'total_amount': 'REAL', 'currency': 'TEXT',
            'total_amount_currency': 'TEXT', 'total_amount_usd': 'REAL', 'paid_amount': 'REAL',
            'remaining_amount': 'REAL', 'payments': 'TEXT', 'payment_method': 'TEXT',
            'exchange_rate': 'REAL', 'exchange_rate_at_booking': 'TEXT',
            'platform_commission': 'REAL', 'original_platform_commission': 'REAL',
            'commission_status': 'TEXT', 'commission_applied_date': 'TEXT',
            'dev_deduction_type': 'TEXT', 'dev_deduction_value': 'REAL',
            'development_deduction': 'REAL', 'final_distributable_amount': 'REAL',
            'owner_amount': 'REAL', 'broker_profit': 'REAL', 'origin_type': 'TEXT',
            'transfer_from_booking_id': 'TEXT', 'transfer_commission_amount': 'REAL',
            'source': 'TEXT', 'status': 'TEXT', 'notes': 'TEXT', 'created_at': 'TEXT',
        },
    },
    'apartments': {
        'csv': 'apartments.csv',
        'description': 'Rental units, fixed monthly costs and ROI targets',
        'key_columns': ['id'],
        'aliases': loaders.APARTMENT_ALIASES,
        'columns': {
            'id': 'TEXT PRIMARY KEY', 'name': 'TEXT', 'monthly_expenses': 'TEXT',
            'platform_commission_rate': 'REAL', 'investment_target': 'REAL',
            'investment_start_date': 'TEXT',
        },
    },
    'partners': {
        'csv': 'partners.csv',
        'description': 'Partner records (type and contact details)',
        'key_columns': ['id'],
        'aliases': loaders.PARTNER_ALIASES,
        'columns': {
            'id': 'TEXT PRIMARY KEY', 'name': 'TEXT', 'partner_type': 'TEXT',
            'phone': 'TEXT', 'email': 'TEXT', 'notes': 'TEXT',
        },
    },
    'apartment_partners': {
        'csv': 'apartment_partners.csv',
        'description': 'Apartment rosters: partner percentage per apartment',
        'key_columns': ['apartment_id', 'name'],
        'aliases': loaders.SHARE_ALIASES,
        'columns': {
            'apartment_id': 'TEXT NOT NULL', 'name': 'TEXT NOT NULL', 'percentage': 'REAL',
            'partner_type': 'TEXT', 'partner_id': 'TEXT',
        },
    },
    'expenses': {
        'csv': 'expenses.csv',
        'description': 'Ad hoc apartment expenses',
        'key_columns': ['id'],
        'aliases': loaders.EXPENSE_ALIASES,
        'columns': {
            'id': 'TEXT PRIMARY KEY', 'amount': 'REAL', 'category': 'TEXT', 'currency': 'TEXT',
            'apartment_id': 'TEXT', 'expense_date': 'TEXT', 'description': 'TEXT',
            'is_system_generated': 'INTEGER', 'transfer_from_booking_id': 'TEXT',
            'transfer_to_booking_id': 'TEXT',
        },
    },
    'fund_transactions': {
        'csv': 'fund_transactions.csv',
        'description': 'Development fund deposits and withdrawals',
        'key_columns': ['id'],
        'aliases': loaders.FUND_ALIASES,
        'columns': {
            'id': 'TEXT PRIMARY KEY', 'type': 'TEXT', 'amount': 'REAL', 'amount_egp': 'REAL',
            'currency': 'TEXT', 'description': 'TEXT', 'booking_id': 'TEXT',
            'apartment_id': 'TEXT', 'inventory_item_id': 'TEXT', 'source': 'TEXT',
            'transaction_date': 'TEXT', 'is_system_generated': 'INTEGER',
            'will_create_negative_balance': 'INTEGER',
        },
    },
    'currency_rates': {
        'csv': 'currency_rates.csv',
        'description': 'Live exchange rates (units of EGP per unit)',
        'key_columns': ['currency'],
        'aliases': loaders.RATE_ALIASES,
        'columns': {
            'currency': 'TEXT PRIMARY KEY', 'rate_to_base': 'REAL', 'symbol': 'TEXT',
            'source': 'TEXT', 'last_updated': 'TEXT',
        },
    },
}


def get_db_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """
    Get database connection with optimizations

    Returns:
        sqlite3.Connection with row_factory set to Row
    """
    conn = sqlite3.connect(db_path or DB_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row

    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA cache_size=10000")
    conn.execute("PRAGMA temp_store=MEMORY")

    return conn


def create_tables(conn: sqlite3.Connection):
    """Create ledger tables plus the import log"""
    for table_name, info in TABLE_DEFINITIONS.items():
        cols = ", ".join(f"{c} {t}" for c, t in info['columns'].items())
        if table_name == 'apartment_partners':
            cols += ", UNIQUE(apartment_id, name)"
        conn.execute(f"CREATE TABLE IF NOT EXISTS {table_name} ({cols})")

    # Data import log
    conn.execute("""
        CREATE TABLE IF NOT EXISTS import_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            table_name TEXT NOT NULL,
            rows_imported INTEGER,
            import_mode TEXT,
            imported_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            imported_by TEXT,
            source_file TEXT
        )
    """)

    conn.commit()


def create_indexes(conn: sqlite3.Connection):
    """Create indexes for common queries"""

    indexes = [
        # Bookings
        "CREATE INDEX IF NOT EXISTS idx_bookings_apartment ON bookings(apartment_id)",
        "CREATE INDEX IF NOT EXISTS idx_bookings_check_in ON bookings(check_in)",
        "CREATE INDEX IF NOT EXISTS idx_bookings_check_out ON bookings(check_out)",

        # Rosters
        "CREATE INDEX IF NOT EXISTS idx_apartment_partners_apartment ON apartment_partners(apartment_id)",

        # Expenses
        "CREATE INDEX IF NOT EXISTS idx_expenses_apartment ON expenses(apartment_id)",
        "CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(expense_date)",

        # Fund
        "CREATE INDEX IF NOT EXISTS idx_fund_booking ON fund_transactions(booking_id)",
        "CREATE INDEX IF NOT EXISTS idx_fund_date ON fund_transactions(transaction_date)",
    ]

    for idx_sql in indexes:
        try:
            conn.execute(idx_sql)
        except sqlite3.Error as e:
            logger.warning(f"Index creation warning: {e}")

    conn.commit()


def _prepare_frame(table_name: str, df: pd.DataFrame) -> pd.DataFrame:
    """Normalise CSV columns and keep only the table's own columns"""
    info = TABLE_DEFINITIONS[table_name]
    df = loaders.normalize_columns(df, info.get('aliases'))
    keep = [c for c in info['columns'] if c in df.columns]
    return df[keep]


def init_database(data_folder: Optional[str] = None, db_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Initialize database, importing any CSV files found

    Args:
        data_folder: Path to folder containing CSV files (default: current directory)
        db_path: Database file (default: config.DB_PATH)

    Returns:
        Dictionary with results: {table_name: {'rows': count, 'status': 'success'|'skipped'|'error'}}
    """
    results = {}
    data_path = Path(data_folder) if data_folder else Path(".")

    conn = get_db_connection(db_path)

    logger.info("=" * 80)
    logger.info("DATABASE INITIALIZATION")
    logger.info("=" * 80)

    create_tables(conn)

    for table_name, table_info in TABLE_DEFINITIONS.items():
        csv_file = data_path / table_info['csv']

        if not csv_file.exists():
            logger.warning(f"⚠️  Skipped {table_name}: {csv_file} not found")
            results[table_name] = {'rows': 0, 'status': 'skipped', 'file': str(csv_file)}
            continue

        try:
            df = _prepare_frame(table_name, pd.read_csv(csv_file))
            conn.execute(f"DELETE FROM {table_name}")
            df.to_sql(table_name, conn, if_exists='append', index=False)
            conn.commit()

            logger.info(f"✅ Loaded {table_name}: {len(df):,} rows from {csv_file.name}")
            results[table_name] = {'rows': len(df), 'status': 'success', 'file': str(csv_file)}

        except (OSError, ValueError, sqlite3.Error, pd.errors.ParserError) as e:
            logger.error(f"❌ Error loading {table_name}: {e}")
            results[table_name] = {'rows': 0, 'status': 'error', 'error': str(e)}

    logger.info("\nCreating indexes...")
    create_indexes(conn)
    logger.info("✅ Created indexes")

    conn.close()

    logger.info("=" * 80)
    logger.info("DATABASE INITIALIZATION COMPLETE")
    logger.info("=" * 80)

    return results


def refresh_table_from_csv(
    table_name: str,
    csv_path: str,
    mode: str = 'replace',
    user: str = None,
    db_path: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Refresh a table from CSV file

    Args:
        table_name: Database table name
        csv_path: Path to CSV file
        mode: 'replace' (delete all, insert new) or 'append' (add to existing)
        user: Username for logging (optional)

    Returns:
        Dictionary with import results
    """
    if table_name not in TABLE_DEFINITIONS:
        return {'status': 'error', 'table': table_name, 'error': f'Unknown table: {table_name}'}

    try:
        df = _prepare_frame(table_name, pd.read_csv(csv_path))

        conn = get_db_connection(db_path)
        create_tables(conn)

        if mode == 'replace':
            conn.execute(f"DELETE FROM {table_name}")
        df.to_sql(table_name, conn, if_exists='append', index=False)

        conn.execute("""
            INSERT INTO import_log (table_name, rows_imported, import_mode, imported_by, source_file)
            VALUES (?, ?, ?, ?, ?)
        """, (table_name, len(df), mode, user or 'system', csv_path))

        conn.commit()
        conn.close()

        logger.info(f"✅ Refreshed {table_name}: {len(df):,} rows ({mode} mode)")

        return {
            'status': 'success',
            'table': table_name,
            'rows': len(df),
            'mode': mode
        }

    except (OSError, ValueError, sqlite3.Error, pd.errors.ParserError) as e:
        logger.error(f"❌ Error refreshing {table_name}: {e}")
        return {
            'status': 'error',
            'table': table_name,
            'error': str(e)
        }


def read_table(table_name: str, db_path: Optional[str] = None) -> pd.DataFrame:
    """
    One ledger table as a DataFrame

    Raises:
        ValueError: table is not one of TABLE_DEFINITIONS
    """
    if table_name not in TABLE_DEFINITIONS:
        raise ValueError(f"Unknown table: {table_name}")
    conn = get_db_connection(db_path)
    create_tables(conn)
    df = pd.read_sql(f"SELECT * FROM {table_name}", conn)
    conn.close()
    return df


def export_table_to_csv(table_name: str, csv_path: str, db_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Export a ledger table to CSV, readable again by refresh_table_from_csv

    Returns:
        Dictionary with export results
    """
    try:
        df = read_table(table_name, db_path)
        df.to_csv(csv_path, index=False)
    except (OSError, ValueError, sqlite3.Error, pd.errors.DatabaseError) as e:
        logger.error(f"❌ Error exporting {table_name}: {e}")
        return {'status': 'error', 'table': table_name, 'error': str(e)}

    logger.info(f"✅ Exported {table_name}: {len(df):,} rows to {csv_path}")
    return {'status': 'success', 'table': table_name, 'rows': len(df), 'file': csv_path}


def backup_database(backup_dir: str = "backups", db_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Snapshot every ledger table as CSV in a timestamped folder

    The folder has the same file names init_database imports, so a backup
    can be restored with init_database(<folder>).
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    folder = Path(backup_dir) / timestamp
    folder.mkdir(parents=True, exist_ok=True)

    results = {
        table_name: export_table_to_csv(table_name, str(folder / info['csv']), db_path)
        for table_name, info in TABLE_DEFINITIONS.items()
    }

    logger.info(f"✅ Backup created in {folder}/")
    return {'timestamp': timestamp, 'backup_dir': str(folder), 'tables': results}


def validate_database(db_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Validate database integrity and structure

    Returns:
        Dictionary with validation results
    """
    conn = get_db_connection(db_path)
    issues = []

    for table_name in TABLE_DEFINITIONS.keys():
        try:
            count = pd.read_sql(f"SELECT COUNT(*) as cnt FROM {table_name}", conn)
            row_count = count['cnt'].iloc[0]

            if row_count == 0:
                issues.append({
                    'severity': 'warning',
                    'table': table_name,
                    'message': 'Table exists but is empty'
                })
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            issues.append({
                'severity': 'error',
                'table': table_name,
                'message': f'Table missing or error: {e}'
            })

    # Rosters must reference existing apartments
    try:
        orphans = pd.read_sql("""
            SELECT ap.apartment_id, ap.name FROM apartment_partners ap
            LEFT JOIN apartments a ON a.id = ap.apartment_id
            WHERE a.id IS NULL
        """, conn)
        for _, row in orphans.iterrows():
            issues.append({
                'severity': 'warning',
                'table': 'apartment_partners',
                'message': f"Partner {row['name']} references missing apartment {row['apartment_id']}"
            })
    except (sqlite3.Error, pd.errors.DatabaseError) as e:
        issues.append({
            'severity': 'error',
            'table': 'apartment_partners',
            'message': f'Roster check failed: {e}'
        })

    conn.close()

    return {
        'valid': len([i for i in issues if i['severity'] == 'error']) == 0,
        'issues': issues
    }


# ============================================================
# REPOSITORY
# ============================================================

class SqliteRepository(Repository):
    """Repository backed by the SQLite tables above."""

    def __init__(self, db_path: Optional[str] = None, seed_rates: bool = True):
        self.db_path = db_path or DB_PATH
        conn = get_db_connection(self.db_path)
        create_tables(conn)
        create_indexes(conn)
        conn.close()
        if seed_rates and not self.list_currency_rates():
            for r in DEFAULT_CURRENCY_RATES:
                self.save_currency_rate(CurrencyRate(
                    currency=r['currency'], rate_to_base=r['rate_to_base'], symbol=r['symbol']))

    def _query(self, query: str, params: tuple = ()) -> pd.DataFrame:
        conn = get_db_connection(self.db_path)
        try:
            return pd.read_sql(query, conn, params=params)
        finally:
            conn.close()

    def table_csv(self, table_name: str) -> str:
        """CSV text of one ledger table (same columns export_table_to_csv writes)."""
        return read_table(table_name, self.db_path).to_csv(index=False)

    def backup(self, backup_dir: str = "backups") -> Dict[str, Any]:
        return backup_database(backup_dir, self.db_path)

    def _upsert(self, table_name: str, record: Dict[str, Any]):
        cols = [c for c in TABLE_DEFINITIONS[table_name]['columns'] if c in record]
        placeholders = ", ".join("?" for _ in cols)
        values = tuple(int(record[c]) if isinstance(record[c], bool) else record[c] for c in cols)
        conn = get_db_connection(self.db_path)
        conn.execute(
            f"INSERT OR REPLACE INTO {table_name} ({', '.join(cols)}) VALUES ({placeholders})",
            values,
        )
        conn.commit()
        conn.close()

    def _shares(self) -> List[PartnerShare]:
        return loaders.load_partner_shares(self._query("SELECT * FROM apartment_partners"))

    def snapshot(self) -> Snapshot:
        shares = self._shares()
        return Snapshot(
            bookings=loaders.load_bookings(self._query("SELECT * FROM bookings")),
            apartments=loaders.load_apartments(self._query("SELECT * FROM apartments"), shares),
            partners=loaders.load_partners(self._query("SELECT * FROM partners")),
            expenses=loaders.load_expenses(self._query("SELECT * FROM expenses")),
            fund_transactions=self.list_fund_transactions(),
            currency_rates=self.list_currency_rates(),
        )

    def get_booking(self, booking_id: str) -> Booking:
        found = loaders.load_bookings(self._query("SELECT * FROM bookings WHERE id = ?", (booking_id,)))
        if not found:
            raise NotFoundError(f"Booking not found: {booking_id}")
        return found[0]

    def save_booking(self, booking: Booking) -> Booking:
        self._upsert('bookings', booking.to_record())
        return booking

    def get_apartment(self, apartment_id: str) -> Apartment:
        rows = self._query("SELECT * FROM apartments WHERE id = ?", (apartment_id,))
        shares = [s for s in self._shares() if s.apartment_id == apartment_id]
        found = loaders.load_apartments(rows, shares)
        if not found:
            raise NotFoundError(f"Apartment not found: {apartment_id}")
        return found[0]

    def save_apartment(self, apartment: Apartment) -> Apartment:
        self._upsert('apartments', apartment.to_record())
        conn = get_db_connection(self.db_path)
        conn.execute("DELETE FROM apartment_partners WHERE apartment_id = ?", (apartment.id,))
        for s in apartment.partners:
            s.apartment_id = apartment.id
            conn.execute(
                "INSERT OR REPLACE INTO apartment_partners (apartment_id, name, percentage, partner_type, partner_id) "
                "VALUES (?, ?, ?, ?, ?)",
                (s.apartment_id, s.name, s.percentage, s.partner_type, s.partner_id),
            )
        conn.commit()
        conn.close()
        return apartment

    def save_partner(self, partner: Partner) -> Partner:
        self._upsert('partners', partner.to_record())
        return partner

    def save_expense(self, expense: Expense) -> Expense:
        self._upsert('expenses', expense.to_record())
        return expense

    def list_fund_transactions(self) -> List[FundTransaction]:
        return loaders.load_fund_transactions(self._query("SELECT * FROM fund_transactions"))

    def save_fund_transaction(self, txn: FundTransaction) -> FundTransaction:
        self._upsert('fund_transactions', txn.to_record())
        logger.info(f"Fund {txn.type} {txn.amount:.2f} {txn.currency} saved ({txn.id})")
        return txn

    def list_currency_rates(self) -> List[CurrencyRate]:
        return loaders.load_currency_rates(self._query("SELECT * FROM currency_rates"))

    def save_currency_rate(self, rate: CurrencyRate) -> CurrencyRate:
        rec = rate.to_record()
        rec['currency'] = rate.currency.upper()
        self._upsert('currency_rates', rec)
        return rate

    def delete_currency_rate(self, currency: str) -> None:
        conn = get_db_connection(self.db_path)
        cur = conn.execute("DELETE FROM currency_rates WHERE currency = ?", (currency.upper(),))
        deleted = cur.rowcount
        conn.commit()
        conn.close()
        if deleted == 0:
            raise NotFoundError(f"Currency rate not found: {currency}")
