"""
cortexlink — Host side of the robot cortex UART link

Modules
-------
link           Serial transport (exact reads/writes, timeout, cancel)
protocol       Frame codec: header, payload layouts, wire encoding
sequence       Per-type sequence counter validation / stamping
odometry       Differential-drive dead reckoning from encoder counts
sensor         Inertial sensor interface + static stand-in
calibration    IMU bias estimation at startup
inertial       Bias-corrected angular rate / linear acceleration
session        Poll loop, dispatch and outbound send paths
driver         Console driver
dashboard      Live matplotlib view
"""
