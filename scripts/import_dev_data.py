"""Import or delete the development data set.

Usage:
  python scripts/import_dev_data.py --import [--data-dir dev-data]
  python scripts/import_dev_data.py --delete
The database comes from MONGO_URI / MONGO_DB (or .env), as for the app.
"""
import argparse
import logging
import os
import sys
from pathlib import Path

# Ensure the repository root is on sys.path so `backend` package imports work
# when this script is executed directly.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.tourbook import create_app
from backend.tourbook.config import config
from backend.tourbook.services import dev_data


def main():
    p = argparse.ArgumentParser(description='Load or clear tours, users and reviews')
    action = p.add_mutually_exclusive_group(required=True)
    action.add_argument('--import', dest='do_import', action='store_true', help='Insert the JSON data files')
    action.add_argument('--delete', action='store_true', help='Empty the tours, users and reviews collections')
    p.add_argument('--data-dir', default=str(ROOT / 'dev-data'))
    args = p.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')
    app = create_app(config[os.environ.get('APP_ENV', 'default')])

    with app.app_context():
        if args.do_import:
            counts = dev_data.import_data(args.data_dir)
            print(f"Data successfully loaded: {counts}")
        else:
            counts = dev_data.delete_data()
            print(f"Data successfully deleted: {counts}")


if __name__ == '__main__':
    main()
