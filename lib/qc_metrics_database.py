#!/usr/bin/env python3

import sys
import argparse
import sqlite3
import datetime
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

import pandas as pd
from lxml import etree

QC_METRICS_VIEW = 'V_Dataset_QC_Metrics_Export'
QCART_RESULTS_TABLE = 'T_QCART_Results'

#### Metrics used by QC-ART, in the order they appear in SMAQC_Data.csv
QC_METRIC_NAMES = [ 'p_2c', 'ms1_2b', 'rt_ms_q1', 'rt_ms_q4', 'rt_msms_q1', 'rt_msms_q4' ]

SCHEMA = [
    f"""CREATE TABLE IF NOT EXISTS {QC_METRICS_VIEW} (
        dataset TEXT PRIMARY KEY, dataset_id INTEGER, acq_time_start TEXT, dataset_rating TEXT,
        p_2c REAL, ms1_2b REAL, rt_ms_q1 REAL, rt_ms_q4 REAL, rt_msms_q1 REAL, rt_msms_q4 REAL )""",
    f"""CREATE TABLE IF NOT EXISTS {QCART_RESULTS_TABLE} (
        dataset_id INTEGER, masic_job INTEGER, qcart REAL, results_xml TEXT, entered TEXT )""",
]


####################################################################################################
#### Pull the file name out of a connection string such as "Data Source=/path/dms.sqlite;..."
def get_database_path(connection_string):
    for part in connection_string.split(';'):
        if '=' in part:
            key, value = part.split('=', 1)
            if key.strip().lower() in [ 'data source', 'database' ]:
                return value.strip()
        elif part.strip() != '':
            return part.strip()
    return connection_string.strip()


####################################################################################################
#### QC metrics database class
class QcMetricsDatabase:
    """
    Reads the SMAQC metrics used by QC-ART and stores QC-ART scores. The
    backing store is a sqlite database holding a V_Dataset_QC_Metrics_Export
    table and a T_QCART_Results table.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, connection_string, verbose=None):

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose

        self.connection_string = connection_string
        self.database_path = get_database_path(connection_string)
        self.error_message = ''


    ####################################################################################################
    #### Open a connection
    def connect(self):
        return sqlite3.connect(self.database_path)


    ####################################################################################################
    #### Create the tables if they are not there yet
    def create_schema(self):
        connection = self.connect()
        try:
            with connection:
                for statement in SCHEMA:
                    connection.execute(statement)
        finally:
            connection.close()
        return 'OK'


    ####################################################################################################
    #### Return a DataFrame of QC metrics for the given datasets; None on a database error
    def get_qc_metrics(self, dataset_names):

        dataset_names = list(dataset_names)
        placeholders = ', '.join([ '?' ] * len(dataset_names))
        sql = (f"SELECT dataset AS dataset_name, 0 AS fraction, dataset_id, acq_time_start AS date, "
               f"dataset_rating AS rating, {', '.join(QC_METRIC_NAMES)} "
               f"FROM {QC_METRICS_VIEW} WHERE dataset IN ({placeholders})")

        if self.verbose >= 2:
            eprint(f"DEBUG: {sql}")

        try:
            connection = self.connect()
            try:
                metrics = pd.read_sql_query(sql, connection, params=dataset_names)
            finally:
                connection.close()
        except (sqlite3.Error, pd.io.sql.DatabaseError) as error:
            self.error_message = f"Error retrieving QC metric data from database: {error}"
            eprint(f"ERROR: {self.error_message}")
            return

        if self.verbose >= 1:
            eprint(f"INFO: Retrieved QC metrics for {len(metrics)} of {len(dataset_names)} datasets")
        return metrics


    ####################################################################################################
    #### Store the QC-ART results XML for a dataset
    def store_qcart_results(self, dataset_id, results_xml):

        try:
            root = etree.fromstring(results_xml.encode('utf-8'))
        except etree.XMLSyntaxError as error:
            self.error_message = f"QC-ART results XML could not be parsed: {error}"
            eprint(f"ERROR: {self.error_message}")
            return

        masic_job = root.findtext('MASIC_Job', default='0')
        qcart_text = root.findtext("Measurements/Measurement[@Name='QCART']")
        if qcart_text is None:
            self.error_message = "QC-ART results XML does not have a QCART measurement"
            eprint(f"ERROR: {self.error_message}")
            return

        try:
            connection = self.connect()
            try:
                with connection:
                    connection.execute(f"INSERT INTO {QCART_RESULTS_TABLE} (dataset_id, masic_job, qcart, results_xml, entered) VALUES (?, ?, ?, ?, ?)",
                        ( int(dataset_id), int(masic_job), float(qcart_text), results_xml, datetime.datetime.now().isoformat(timespec='seconds') ))
            finally:
                connection.close()
        except (sqlite3.Error, ValueError) as error:
            self.error_message = f"Error storing the QC-ART result in database: {error}"
            eprint(f"ERROR: {self.error_message}")
            return

        if self.verbose >= 1:
            eprint(f"INFO: Stored QC-ART result {qcart_text} for dataset ID {dataset_id}")
        return 'OK'


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Reads QC metrics for datasets from the QC metrics database')
    argparser.add_argument('--connection_string', action='store', required=True, help='Path to the sqlite database or a Data Source= connection string')
    argparser.add_argument('--create', action='count', help='If set, create the tables if they do not exist')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    argparser.add_argument('datasets', type=str, nargs='*', help='Names of the datasets')
    params = argparser.parse_args()

    #### Set verbose
    verbose = params.verbose
    if verbose is None: verbose = 1

    database = QcMetricsDatabase(params.connection_string, verbose=verbose)
    if params.create:
        database.create_schema()
    if len(params.datasets) == 0:
        return

    metrics = database.get_qc_metrics(params.datasets)
    if metrics is None:
        sys.exit(1)
    print(metrics.to_csv(index=False), end='')


#### For command line usage
if __name__ == "__main__": main()
